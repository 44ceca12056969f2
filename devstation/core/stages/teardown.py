"""
Teardown stage catalogue — what setup installed, removed leaf-first.

    1. applications      app bundles in /Applications
    2. language runtimes nvm / npm state, pyenv
    3. shell & dotfiles  Oh My Zsh, login shell, dotfiles
    4. identity          SSH key pair and its ssh config entry
    5. package manager   Brewfile packages, then Homebrew itself

Each category is one Stage; the TeardownWorkflow asks for confirmation
per Stage. Every step's guard is "already absent", so a second teardown
finds nothing to do. Removal failures never abort the run.
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from devstation.core.config.loader import AppSpec, WorkstationConfig
from devstation.core.engine.actions import command, download, file_op
from devstation.core.engine.guards import all_of, file_lacks, paths_absent, probe_output_contains
from devstation.core.models.action import Action
from devstation.core.models.step import Stage, Step
from devstation.core.stages.setup import (
    SSH_BLOCK_HEADER,
    SSH_IDENTITY_LINE,
    app_slug,
    brew_command,
    brew_installed,
)

if TYPE_CHECKING:
    from devstation.core.context import RunContext

DEFAULT_SHELL = "/bin/bash"


def _remove_existing(ctx: RunContext, *paths: Path) -> Iterator[Action]:
    for path in paths:
        if ctx.probe.exists(path):
            yield file_op("remove", path, f"remove {path}")


def _runtime_paths(config: WorkstationConfig) -> tuple[Path, ...]:
    home = config.home
    return (
        config.nvm_dir,
        home / ".npm",
        home / ".node-gyp",
        home / ".node_repl_history",
    )


def _dotfile_paths(config: WorkstationConfig) -> tuple[Path, ...]:
    home = config.home
    return (config.dotfiles_dir, home / ".gitconfig", home / ".zshrc", home / ".zprofile")


# ── 1. Applications ─────────────────────────────────────────────


def _remove_app(app: AppSpec, ctx: RunContext, *, force: bool = False) -> Iterator[Action]:
    bundle = ctx.config.applications_dir / app.bundle
    if not ctx.config.use_sudo_for_apps:
        yield file_op("remove", bundle, f"remove {bundle}")
    elif force:
        # sudo -n fails instead of asking for a password
        yield command(["sudo", "-n", "rm", "-rf", str(bundle)], f"remove {bundle}")
    else:
        yield command(["sudo", "rm", "-rf", str(bundle)], f"remove {bundle}", interactive=True)


def _app_step(config: WorkstationConfig, app: AppSpec, force: bool) -> Step:
    bundle = config.applications_dir / app.bundle
    return Step(
        name=f"remove-app-{app_slug(app)}",
        body=functools.partial(_remove_app, app, force=force),
        guard=paths_absent(bundle),
        fatal=False,
        remediation=f"Drag {bundle} to the Trash.",
    )


# ── 2. Language runtimes ────────────────────────────────────────


def _remove_node(ctx: RunContext) -> Iterator[Action]:
    yield from _remove_existing(ctx, *_runtime_paths(ctx.config))


def _remove_pyenv(ctx: RunContext) -> Iterator[Action]:
    yield from _remove_existing(ctx, ctx.config.pyenv_root)


# ── 3. Shell & dotfiles ─────────────────────────────────────────


def _login_user(ctx: RunContext) -> str:
    return ctx.probe.env("USER") or ctx.home.name


def _login_shell_reset(ctx: RunContext) -> bool:
    check = probe_output_contains(
        ["dscl", ".", "-read", f"/Users/{_login_user(ctx)}", "UserShell"], DEFAULT_SHELL,
    )
    return check(ctx)


def _reset_shell(ctx: RunContext, *, force: bool = False) -> Iterator[Action]:
    if force:
        # chsh run by root for a named user does not ask for a password
        yield command(
            ["sudo", "-n", "chsh", "-s", DEFAULT_SHELL, _login_user(ctx)],
            f"chsh -s {DEFAULT_SHELL}",
        )
    else:
        yield command(["chsh", "-s", DEFAULT_SHELL], interactive=True)


def _remove_oh_my_zsh(ctx: RunContext) -> Iterator[Action]:
    yield from _remove_existing(ctx, ctx.config.oh_my_zsh_dir)


def _remove_dotfiles(ctx: RunContext) -> Iterator[Action]:
    yield from _remove_existing(ctx, *_dotfile_paths(ctx.config))


# ── 4. Identity ─────────────────────────────────────────────────


def _remove_ssh_key(ctx: RunContext) -> Iterator[Action]:
    config = ctx.config
    yield from _remove_existing(ctx, config.ssh_key_path, config.ssh_public_key_path)
    ssh_config = config.ssh_dir / "config"
    if not ctx.probe.exists(ssh_config):
        return
    text = ctx.probe.read_text(ssh_config)
    if SSH_BLOCK_HEADER in text:
        yield file_op(
            "remove_block", ssh_config,
            f"drop the keychain block from {ssh_config}",
            start=SSH_BLOCK_HEADER,
            end=SSH_IDENTITY_LINE,
        )
    elif SSH_IDENTITY_LINE in text:
        yield file_op(
            "remove_lines", ssh_config,
            f"drop the key entry from {ssh_config}",
            needle=SSH_IDENTITY_LINE,
        )


# ── 5. Package manager ──────────────────────────────────────────


def _packages_removed(ctx: RunContext) -> bool:
    return not brew_installed(ctx) or not ctx.probe.exists(ctx.config.brewfile_path)


def _remove_packages(ctx: RunContext) -> Iterator[Action]:
    yield brew_command(ctx, "bundle", f"--file={ctx.config.brewfile_path}", "--force", "cleanup")


def _homebrew_removed(ctx: RunContext) -> bool:
    return not brew_installed(ctx)


def _remove_homebrew(ctx: RunContext, *, force: bool = False) -> Iterator[Action]:
    script = ctx.scratch_dir / "homebrew-uninstall.sh"
    yield download(
        ctx.config.homebrew_uninstall_url, script,
        "download the Homebrew uninstaller",
        timeout=ctx.config.network_timeout,
    )
    if force:
        yield command(
            ["/bin/bash", str(script), "--force"],
            "run the Homebrew uninstaller (non-interactive)",
            env={"NONINTERACTIVE": "1"},
        )
    else:
        yield command(["/bin/bash", str(script)], "run the Homebrew uninstaller", interactive=True)


# ── Catalogue ───────────────────────────────────────────────────


def teardown_stages(config: WorkstationConfig, force: bool = False) -> list[Stage]:
    """Teardown categories in reverse dependency order.

    With ``force`` every program runs without reading from the terminal.
    """
    ssh_config = config.ssh_dir / "config"

    applications = tuple(_app_step(config, app, force) for app in config.apps)

    runtimes = (
        Step("remove-node", _remove_node, guard=paths_absent(*_runtime_paths(config)), fatal=False),
        Step("remove-pyenv", _remove_pyenv, guard=paths_absent(config.pyenv_root), fatal=False),
    )

    shell = (
        Step("reset-login-shell", functools.partial(_reset_shell, force=force),
             guard=_login_shell_reset, fatal=False,
             remediation=f"Run: chsh -s {DEFAULT_SHELL}"),
        Step("remove-oh-my-zsh", _remove_oh_my_zsh, guard=paths_absent(config.oh_my_zsh_dir),
             fatal=False),
        Step("remove-dotfiles", _remove_dotfiles, guard=paths_absent(*_dotfile_paths(config)),
             fatal=False),
    )

    identity = (
        Step(
            "remove-ssh-key", _remove_ssh_key,
            guard=all_of(
                paths_absent(config.ssh_key_path, config.ssh_public_key_path),
                file_lacks(ssh_config, SSH_BLOCK_HEADER),
                file_lacks(ssh_config, SSH_IDENTITY_LINE),
            ),
            fatal=False,
        ),
    )

    package_manager = (
        Step("remove-homebrew-packages", _remove_packages, guard=_packages_removed, fatal=False,
             remediation="Run: brew bundle --force cleanup"),
        Step("remove-homebrew", functools.partial(_remove_homebrew, force=force),
             guard=_homebrew_removed, fatal=False,
             remediation="See https://github.com/Homebrew/install#uninstall-homebrew"),
    )

    return [
        Stage("applications", applications, "Remove desktop applications?"),
        Stage("language runtimes", runtimes, "Remove Node.js and Python environments?"),
        Stage("shell & dotfiles", shell, "Reset the shell and remove Oh My Zsh and dotfiles?"),
        Stage("identity", identity, "Remove the SSH key pair?"),
        Stage("package manager", package_manager, "Uninstall Homebrew and its packages?"),
    ]
