"""
Tests for adapter protocol, registry, mock, shell, filesystem, wait and http adapters.
"""

import io
import itertools
import json
import urllib.error
from pathlib import Path

from devstation.adapters import default_registry
from devstation.adapters.base import ExecutionContext
from devstation.adapters.mock import MockAdapter
from devstation.adapters.net.http import HttpAdapter
from devstation.adapters.registry import AdapterRegistry
from devstation.adapters.shell.command import ShellCommandAdapter, format_argv
from devstation.adapters.shell.filesystem import FilesystemAdapter
from devstation.adapters.shell.wait import WaitAdapter
from devstation.core.models.action import Action, FailureKind, Receipt
from devstation.core.services.credentials import Credential


def _ctx(adapter: str, argv=None, **params) -> ExecutionContext:
    action = Action(id="op-1", description="test op", adapter=adapter, argv=argv or [], params=params)
    return ExecutionContext(action=action, params=action.params)


# ── Mock Adapter Tests ───────────────────────────────────────────────


class TestMockAdapter:
    def test_default_success(self):
        mock = MockAdapter(adapter_name="test-mock")
        receipt = mock.execute(_ctx("test-mock"))
        assert receipt.ok
        assert mock.call_count == 1

    def test_custom_response(self):
        mock = MockAdapter()
        mock.set_response("op-1", Receipt.success(adapter="mock", action_id="op-1", output="custom"))
        assert mock.execute(_ctx("mock")).output == "custom"

    def test_set_failure(self):
        mock = MockAdapter()
        mock.set_failure("op-1", error="Intentional failure", kind=FailureKind.TIMEOUT)
        receipt = mock.execute(_ctx("mock"))
        assert receipt.failed
        assert receipt.kind is FailureKind.TIMEOUT

    def test_fail_matching(self):
        mock = MockAdapter()
        mock.fail_matching("test", error="matched")
        assert mock.execute(_ctx("mock")).error == "matched"

    def test_reset(self):
        mock = MockAdapter()
        mock.set_failure("op-1")
        mock.execute(_ctx("mock"))
        mock.reset()
        assert mock.call_count == 0
        assert mock.execute(_ctx("mock")).ok


# ── Registry Tests ───────────────────────────────────────────────────


class TestAdapterRegistry:
    def test_register_and_dispatch(self):
        reg = AdapterRegistry()
        mock = MockAdapter(adapter_name="shell")
        reg.register(mock)
        receipt = reg.execute_action(Action(id="a", description="x", argv=["true"]))
        assert receipt.ok
        assert mock.call_count == 1
        assert reg.names == ["shell"]

    def test_unknown_adapter(self):
        receipt = AdapterRegistry().execute_action(Action(id="a", description="x", adapter="ftp"))
        assert receipt.failed
        assert receipt.kind is FailureKind.VALIDATION

    def test_validation_failure(self):
        reg = AdapterRegistry()
        reg.register(ShellCommandAdapter())
        receipt = reg.execute_action(Action(id="a", description="x"))
        assert receipt.failed
        assert receipt.kind is FailureKind.VALIDATION
        assert "argv" in receipt.error

    def test_later_registration_wins(self):
        reg = AdapterRegistry()
        first, second = MockAdapter(adapter_name="shell"), MockAdapter(adapter_name="shell")
        reg.register(first)
        reg.register(second)
        assert reg.get("shell") is second

    def test_default_registry(self):
        names = set(default_registry().names)
        assert names == {"shell", "filesystem", "http", "wait"}

    def test_raising_adapter_becomes_failure(self):
        class Broken(MockAdapter):
            def execute(self, context):
                raise RuntimeError("kaboom")

        reg = AdapterRegistry()
        reg.register(Broken(adapter_name="shell"))
        receipt = reg.execute_action(Action(id="a", description="x", argv=["true"]))
        assert receipt.failed
        assert "kaboom" in receipt.error


# ── Shell Adapter Tests ──────────────────────────────────────────────


class TestShellCommandAdapter:
    def test_success_captures_output(self):
        receipt = ShellCommandAdapter().execute(_ctx("shell", ["sh", "-c", "echo hello"]))
        assert receipt.ok
        assert receipt.output == "hello"
        assert receipt.return_code == 0

    def test_arguments_are_not_interpreted(self):
        receipt = ShellCommandAdapter().execute(_ctx("shell", ["echo", "$HOME; rm -rf /"]))
        assert receipt.output == "$HOME; rm -rf /"

    def test_nonzero_exit_is_effect_failure(self):
        receipt = ShellCommandAdapter().execute(_ctx("shell", ["sh", "-c", "echo oops >&2; exit 3"]))
        assert receipt.failed
        assert receipt.kind is FailureKind.EFFECT
        assert receipt.return_code == 3
        assert receipt.error == "oops"

    def test_missing_program_is_precondition(self):
        receipt = ShellCommandAdapter().execute(_ctx("shell", ["devstation-no-such-program"]))
        assert receipt.kind is FailureKind.PRECONDITION

    def test_exit_127_is_precondition(self):
        receipt = ShellCommandAdapter().execute(_ctx("shell", ["sh", "-c", "devstation-no-such-program"]))
        assert receipt.return_code == 127
        assert receipt.kind is FailureKind.PRECONDITION

    def test_timeout(self):
        receipt = ShellCommandAdapter().execute(_ctx("shell", ["sleep", "5"], timeout=1))
        assert receipt.kind is FailureKind.TIMEOUT

    def test_env_passed(self):
        receipt = ShellCommandAdapter().execute(
            _ctx("shell", ["sh", "-c", 'echo "$GREETING"'], env={"GREETING": "hi"})
        )
        assert receipt.output == "hi"

    def test_validate_cwd(self, tmp_path: Path):
        ok, error = ShellCommandAdapter().validate(_ctx("shell", ["true"], cwd=str(tmp_path / "missing")))
        assert not ok
        assert "does not exist" in error

    def test_format_argv(self):
        assert format_argv(["brew", "update"]) == "brew update"
        assert format_argv(["git", "config", "user.name", "Ada Lovelace"]) == "git config user.name 'Ada Lovelace'"


# ── Filesystem Adapter Tests ─────────────────────────────────────────


class TestFilesystemAdapter:
    def _run(self, operation: str, path: Path, **params) -> Receipt:
        return FilesystemAdapter().execute(_ctx("filesystem", operation=operation, path=str(path), **params))

    def test_write_and_read(self, tmp_path: Path):
        target = tmp_path / "sub" / "file.txt"
        assert self._run("write", target, content="hello\n").ok
        assert self._run("read", target).output == "hello\n"

    def test_read_missing(self, tmp_path: Path):
        assert self._run("read", tmp_path / "nope").failed

    def test_append_missing_is_idempotent(self, tmp_path: Path):
        target = tmp_path / "config"
        self._run("append_missing", target, content="UseKeychain yes\n", marker="UseKeychain")
        receipt = self._run("append_missing", target, content="UseKeychain yes\n", marker="UseKeychain")
        assert receipt.metadata["changed"] is False
        assert target.read_text() == "UseKeychain yes\n"

    def test_mkdir_mode(self, tmp_path: Path):
        target = tmp_path / ".ssh"
        self._run("mkdir", target, mode=0o700)
        assert target.is_dir()
        assert (target.stat().st_mode & 0o777) == 0o700

    def test_symlink_replaces_file(self, tmp_path: Path):
        source = tmp_path / "dotfiles" / ".zshrc"
        source.parent.mkdir()
        source.write_text("from dotfiles")
        link = tmp_path / ".zshrc"
        link.write_text("old")
        assert self._run("symlink", link, target=str(source)).ok
        assert link.is_symlink()
        assert link.read_text() == "from dotfiles"

    def test_remove_tree_and_file(self, tmp_path: Path):
        tree = tmp_path / ".nvm" / "versions"
        tree.mkdir(parents=True)
        (tree / "x").write_text("x")
        assert self._run("remove", tmp_path / ".nvm").ok
        assert not (tmp_path / ".nvm").exists()

    def test_remove_absent_is_success(self, tmp_path: Path):
        receipt = self._run("remove", tmp_path / "gone")
        assert receipt.ok
        assert receipt.metadata["absent"] is True

    def test_remove_lines(self, tmp_path: Path):
        target = tmp_path / "config"
        target.write_text("Host *\n  IdentityFile ~/.ssh/id_ed25519\n  UseKeychain yes\n")
        receipt = self._run("remove_lines", target, needle="IdentityFile ~/.ssh/id_ed25519")
        assert receipt.metadata["removed"] == 1
        assert target.read_text() == "Host *\n  UseKeychain yes\n"

    def test_remove_block(self, tmp_path: Path):
        target = tmp_path / "config"
        target.write_text(
            "Host build\n  HostName build.local\n"
            "\n# managed\nHost *\n  UseKeychain yes\n  IdentityFile ~/.ssh/id\n"
            "Host other\n"
        )
        receipt = self._run("remove_block", target, start="# managed", end="IdentityFile")
        assert receipt.metadata["removed"] == 5
        assert target.read_text() == "Host build\n  HostName build.local\nHost other\n"

    def test_remove_block_missing_is_noop(self, tmp_path: Path):
        target = tmp_path / "config"
        target.write_text("Host build\n")
        receipt = self._run("remove_block", target, start="# managed", end="IdentityFile")
        assert receipt.ok
        assert receipt.metadata["removed"] == 0
        assert target.read_text() == "Host build\n"

    def test_unterminated_block_fails(self, tmp_path: Path):
        target = tmp_path / "config"
        target.write_text("# managed\nHost *\n")
        receipt = self._run("remove_block", target, start="# managed", end="IdentityFile")
        assert receipt.failed
        assert target.read_text() == "# managed\nHost *\n"

    def test_relative_path_rejected(self):
        ok, error = FilesystemAdapter().validate(_ctx("filesystem", operation="read", path="relative.txt"))
        assert not ok
        assert "absolute" in error

    def test_unknown_operation(self, tmp_path: Path):
        ok, _ = FilesystemAdapter().validate(_ctx("filesystem", operation="chmod", path=str(tmp_path)))
        assert not ok

    def test_os_error_becomes_failure(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        receipt = self._run("write", blocker / "child", content="y")
        assert receipt.failed
        assert "Filesystem error" in receipt.error


# ── Wait Adapter Tests ───────────────────────────────────────────────


class TestWaitAdapter:
    def test_condition_met(self):
        adapter = WaitAdapter(sleep=lambda s: None)
        receipt = adapter.execute(_ctx("wait", ["true"], timeout=10, interval=1))
        assert receipt.ok
        assert receipt.metadata["polls"] == 1

    def test_times_out_with_remediation(self):
        sleeps: list[float] = []
        clock = itertools.count(0, 5)
        adapter = WaitAdapter(sleep=sleeps.append, clock=lambda: next(clock))
        receipt = adapter.execute(_ctx(
            "wait", ["false"], timeout=10, interval=5, remediation="Finish the installer.",
        ))
        assert receipt.failed
        assert receipt.kind is FailureKind.TIMEOUT
        assert "Finish the installer." in receipt.error
        assert sleeps == [5]

    def test_requires_positive_timeout(self):
        ok, _ = WaitAdapter().validate(_ctx("wait", ["true"], timeout=0))
        assert not ok


# ── HTTP Adapter Tests ───────────────────────────────────────────────


class FakeResponse(io.BytesIO):
    def __init__(self, body: bytes = b"", status: int = 200):
        super().__init__(body)
        self.status = status


class FakeUrlopen:
    def __init__(self, response=None, error: Exception | None = None):
        self.requests = []
        self._response = response
        self._error = error

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return self._response


class TestHttpAdapter:
    def test_download(self, tmp_path: Path):
        urlopen = FakeUrlopen(FakeResponse(b"installer-bytes"))
        dest = tmp_path / "scratch" / "install.sh"
        receipt = HttpAdapter(urlopen=urlopen).execute(
            _ctx("http", operation="download", url="https://example.com/install.sh", path=str(dest))
        )
        assert receipt.ok
        assert dest.read_bytes() == b"installer-bytes"
        assert not (tmp_path / "scratch" / "install.sh.part").exists()
        assert urlopen.requests[0].get_header("User-agent").startswith("devstation")

    def test_upload_key_consumes_credential(self, tmp_path: Path):
        pub = tmp_path / "id_ed25519.pub"
        pub.write_text("ssh-ed25519 AAAA ada@example.com\n")
        credential = Credential("ghp_" + "x" * 36, "token")
        urlopen = FakeUrlopen(FakeResponse(status=201))

        receipt = HttpAdapter(urlopen=urlopen).execute(_ctx(
            "http", operation="upload_key", url="https://api.github.com/user/keys",
            path=str(pub), title="laptop", credential=credential,
        ))

        assert receipt.ok
        assert credential.consumed
        request = urlopen.requests[0]
        assert request.get_method() == "POST"
        assert request.get_header("Authorization") == "token ghp_" + "x" * 36
        assert json.loads(request.data) == {"title": "laptop", "key": "ssh-ed25519 AAAA ada@example.com"}
        assert "ghp_" not in json.dumps(receipt.model_dump(exclude={"metadata"}))

    def test_upload_unexpected_status(self, tmp_path: Path):
        pub = tmp_path / "k.pub"
        pub.write_text("ssh-ed25519 AAAA")
        receipt = HttpAdapter(urlopen=FakeUrlopen(FakeResponse(status=200))).execute(_ctx(
            "http", operation="upload_key", url="https://api.github.com/user/keys",
            path=str(pub), title="t", credential=Credential("ghp_" + "x" * 36, "token"),
        ))
        assert receipt.failed
        assert receipt.kind is FailureKind.NETWORK

    def test_http_error_is_network_failure(self, tmp_path: Path):
        error = urllib.error.HTTPError("https://example.com", 401, "Unauthorized", hdrs=None, fp=None)
        receipt = HttpAdapter(urlopen=FakeUrlopen(error=error)).execute(
            _ctx("http", operation="download", url="https://example.com/x", path=str(tmp_path / "x"))
        )
        assert receipt.kind is FailureKind.NETWORK
        assert receipt.metadata["http_status"] == 401

    def test_unreachable_is_network_failure(self, tmp_path: Path):
        error = urllib.error.URLError("no route to host")
        receipt = HttpAdapter(urlopen=FakeUrlopen(error=error)).execute(
            _ctx("http", operation="download", url="https://example.com/x", path=str(tmp_path / "x"))
        )
        assert receipt.kind is FailureKind.NETWORK

    def test_upload_requires_credential(self, tmp_path: Path):
        ok, error = HttpAdapter().validate(_ctx(
            "http", operation="upload_key", url="https://example.com", path=str(tmp_path / "k.pub"),
        ))
        assert not ok
        assert "credential" in error
