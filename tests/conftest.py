"""
Shared test fixtures and configuration.

Nothing here touches the real home directory, the network or a package
manager: the workstation lives under ``tmp_path``, live-state queries
go to a FakeProbe, and effects go to MockAdapters unless a test swaps
in a real adapter on purpose.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

import pytest

from devstation.adapters.mock import MockAdapter
from devstation.adapters.registry import AdapterRegistry
from devstation.core.config.loader import WorkstationConfig
from devstation.core.context import RunContext, build_context
from devstation.core.models.step import ExecutionMode
from devstation.core.observability.recorder import Recorder
from devstation.core.services.probe import ProbeError, ProbeResult, SystemProbe
from devstation.core.services.prompts import ScriptedInput
from devstation.core.stages.setup import render_zshrc

ADAPTER_NAMES = ("shell", "filesystem", "http", "wait")

# Always present on a stock macOS install
BUILTIN_PROGRAMS = {"git", "ssh-keygen", "ssh-add", "hdiutil", "chsh", "sudo", "bash", "sh"}


class FakeProbe(SystemProbe):
    """SystemProbe with scripted commands, PATH and git config.

    Filesystem queries (exists, is_dir, read_text, glob) stay real:
    tests build the workstation under ``tmp_path``.
    """

    def __init__(self, programs=BUILTIN_PROGRAMS, machine: str = "arm64"):
        self.programs = set(programs)
        self.git: dict[str, str] = {}
        self.environ: dict[str, str] = {"USER": "dev"}
        self.runs: list[list[str]] = []
        self._machine = machine
        self._responses: dict[tuple[str, ...], ProbeResult] = {}
        self._broken: set[str] = set()

    # ── Scripting ───────────────────────────────────────────────

    def respond(self, *argv: str, returncode: int = 0, stdout: str = "") -> None:
        self._responses[tuple(argv)] = ProbeResult(returncode=returncode, stdout=stdout)

    def break_command(self, program: str) -> None:
        """Make every probe of ``program`` raise ProbeError."""
        self._broken.add(program)

    # ── SystemProbe overrides ───────────────────────────────────

    def which(self, name: str) -> str | None:
        return f"/usr/local/bin/{name}" if name in self.programs else None

    def run(self, argv: list[str], timeout: int = 15) -> ProbeResult:
        self.runs.append(list(argv))
        program = Path(argv[0]).name
        if program in self._broken:
            raise ProbeError(f"Probe command not found: {program}")
        key = (program, *argv[1:])
        return self._responses.get(key, ProbeResult(returncode=1))

    def git_config(self, key: str) -> str:
        if "git" in self._broken:
            raise ProbeError("git is not installed")
        return self.git.get(key, "")

    def machine(self) -> str:
        return self._machine

    def env(self, name: str) -> str | None:
        return self.environ.get(name)


@pytest.fixture(autouse=True)
def _reset_diagnostics():
    """Undo handlers the CLI or setup_logging attached to the package logger."""
    yield
    logger = logging.getLogger("devstation")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def config(home: Path, tmp_path: Path) -> WorkstationConfig:
    apps_dir = tmp_path / "Applications"
    apps_dir.mkdir()
    return WorkstationConfig(
        home=home,
        applications_dir=apps_dir,
        use_sudo_for_apps=False,
    )


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def mocks() -> dict[str, MockAdapter]:
    return {name: MockAdapter(adapter_name=name) for name in ADAPTER_NAMES}


@pytest.fixture
def registry(mocks: dict[str, MockAdapter]) -> AdapterRegistry:
    reg = AdapterRegistry()
    for adapter in mocks.values():
        reg.register(adapter)
    return reg


@pytest.fixture
def make_ctx(
    config: WorkstationConfig,
    probe: FakeProbe,
    registry: AdapterRegistry,
) -> Callable[..., RunContext]:
    """Build a RunContext around the fakes. Log goes to <home>/<run_type>.log."""

    def _make(
        mode: ExecutionMode = ExecutionMode.LIVE,
        answers=(),
        run_type: str = "setup",
        registry_override: AdapterRegistry | None = None,
    ) -> RunContext:
        recorder = Recorder(
            log_path=config.log_path(run_type),
            echo=False,
            channel=f"test-{run_type}",
        )
        return build_context(
            config,
            mode,
            run_type=run_type,
            inputs=ScriptedInput(answers),
            probe=probe,
            registry=registry_override or registry,
            recorder=recorder,
        )

    return _make


@pytest.fixture
def provisioned(config: WorkstationConfig, probe: FakeProbe) -> WorkstationConfig:
    """A workstation on which every setup step's goal state already holds."""
    home = config.home

    probe.programs |= {"brew", "pyenv", "defaultbrowser"}
    probe.respond("xcode-select", "-p", stdout="/Library/Developer/CommandLineTools")

    config.homebrew_prefix = home.parent / "homebrew"
    config.brewfile_path.write_text('brew "git"\ncask "iterm2"\n')
    (config.homebrew_prefix / "Cellar" / "git" / "2.47.0").mkdir(parents=True)
    (config.homebrew_prefix / "Caskroom" / "iterm2").mkdir(parents=True)

    probe.git.update({
        "user.name": "Ada Lovelace",
        "user.email": "ada@example.com",
        "init.defaultBranch": "main",
        "pull.rebase": "false",
    })

    config.ssh_dir.mkdir()
    config.ssh_key_path.write_text("PRIVATE\n")
    config.ssh_public_key_path.write_text("ssh-ed25519 AAAAC3Nza ada@example.com\n")

    for name in config.zsh_plugins:
        (config.oh_my_zsh_dir / "custom" / "plugins" / name).mkdir(parents=True)
    (config.oh_my_zsh_dir / "oh-my-zsh.sh").write_text("# oh-my-zsh\n")
    (home / ".zshrc").write_text(render_zshrc(config))

    (config.nvm_dir / "versions" / "node" / "v20.18.0").mkdir(parents=True)
    probe.respond("pyenv", "versions", "--bare", stdout="system\n3.12.7")

    for app in config.apps:
        (config.applications_dir / app.bundle).mkdir()

    probe.respond("defaultbrowser", stdout="safari\n* chrome")
    return config
