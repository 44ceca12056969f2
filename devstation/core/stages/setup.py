"""
Setup stage catalogue — the six canonical provisioning stages.

    1. prerequisites           Xcode CLI tools, Homebrew, Brewfile bundle
    2. identity & credentials  git identity, SSH key, optional key upload
    3. shell & dotfiles        Oh My Zsh, plugins, .zshrc, dotfile links
    4. language runtimes       Node (nvm), Python (pyenv)
    5. applications            disk-image apps copied to /Applications
    6. system configuration    default browser

The order is a dependency chain: later stages assume what earlier
ones installed (runtimes come from the package manager, the dotfiles
clone uses the SSH identity). Do not reorder.

Every step body is a generator. Interactive reads happen inside the
body, between the actions that need them; the pipeline pulls one
action at a time and runs it through the Executor.
"""

from __future__ import annotations

import functools
import logging
import platform
import re
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from devstation.adapters.shell.command import format_argv
from devstation.core.config.loader import AppSpec, WorkstationConfig
from devstation.core.engine.actions import command, download, file_op, upload_key, wait_until
from devstation.core.engine.guards import (
    git_config_set,
    path_exists,
    probe_succeeds,
    require,
)
from devstation.core.models.action import Action
from devstation.core.models.step import GoalCheck, Stage, Step
from devstation.core.services.probe import ProbeError
from devstation.core.services.validation import EMAIL_RULE, NAME_RULE

if TYPE_CHECKING:
    from devstation.core.context import RunContext

logger = logging.getLogger(__name__)

BREW_LOCATIONS = (Path("/opt/homebrew/bin/brew"), Path("/usr/local/bin/brew"))
BREW_SHELLENV = 'eval "$(/opt/homebrew/bin/brew shellenv)"'
HOMEBREW_MANUAL = (
    'Install Homebrew by hand: /bin/bash -c "$(curl -fsSL {url})" '
    "(see https://brew.sh), then run devstation setup again."
)
OH_MY_ZSH_MANUAL = (
    'Install Oh My Zsh by hand: sh -c "$(curl -fsSL {url})" '
    "(see https://ohmyz.sh), then run devstation setup again."
)

SSH_BLOCK_HEADER = "# macOS keychain integration (devstation)"
SSH_IDENTITY_LINE = "IdentityFile ~/.ssh/id_ed25519"
# teardown removes from the header through the IdentityFile line
SSH_CONFIG_BLOCK = (
    f"\n{SSH_BLOCK_HEADER}\n"
    "Host *\n"
    "  AddKeysToAgent yes\n"
    "  UseKeychain yes\n"
    f"  {SSH_IDENTITY_LINE}\n"
)

GITHUB_KEYS_PAGE = "https://github.com/settings/keys"

ZSHRC_MARKER = "# Managed by devstation"
ZSHRC_TEMPLATE = """\
{marker}
export ZSH="$HOME/.oh-my-zsh"
ZSH_THEME="robbyrussell"

plugins=(
  git
  npm
  node
  yarn
  history-substring-search
{plugins}
)

source $ZSH/oh-my-zsh.sh

# nvm
export NVM_DIR="$HOME/.nvm"
[ -s "$(brew --prefix nvm)/nvm.sh" ] && \\. "$(brew --prefix nvm)/nvm.sh"

# pyenv
export PYENV_ROOT="$HOME/.pyenv"
[[ -d $PYENV_ROOT/bin ]] && export PATH="$PYENV_ROOT/bin:$PATH"
eval "$(pyenv init -)"
"""

# nvm is a shell function, so it runs inside bash with a fixed script.
# Everything variable arrives as a positional argument: $1 is NVM_DIR,
# the rest is the nvm command line.
NVM_WRAPPER = (
    'export NVM_DIR="$1"; shift; '
    'for f in "$NVM_DIR/nvm.sh" "$(brew --prefix nvm 2>/dev/null)/nvm.sh"; do '
    '[ -s "$f" ] && . "$f" && break; '
    "done; "
    'command -v nvm >/dev/null 2>&1 || { echo "nvm is not installed" >&2; exit 127; }; '
    'nvm "$@"'
)


# ── Shared helpers ──────────────────────────────────────────────


def brew_path(ctx: RunContext) -> str | None:
    """Homebrew binary, also when a fresh install is not yet on PATH."""
    found = ctx.probe.which("brew")
    if found:
        return found
    for candidate in BREW_LOCATIONS:
        if ctx.probe.exists(candidate):
            return str(candidate)
    return None


def brew_installed(ctx: RunContext) -> bool:
    return brew_path(ctx) is not None


def brew_command(ctx: RunContext, *args: str, **params) -> Action:
    """A brew invocation, described as the user would type it."""
    argv = [brew_path(ctx) or "brew", *args]
    return command(argv, format_argv(["brew", *args]), **params)


def render_brewfile(config: WorkstationConfig) -> str:
    lines = ["# Development tools"]
    lines += [f'brew "{name}"' for name in config.brew_packages]
    lines += ["", "# Applications"]
    lines += [f'cask "{name}"' for name in config.brew_casks]
    return "\n".join(lines) + "\n"


def render_zshrc(config: WorkstationConfig) -> str:
    plugins = "\n".join(f"  {name}" for name in config.zsh_plugins)
    return ZSHRC_TEMPLATE.format(marker=ZSHRC_MARKER, plugins=plugins)


def git_value(ctx: RunContext, key: str) -> str:
    try:
        return ctx.probe.git_config(key)
    except ProbeError as e:
        logger.debug("git config %s unavailable: %s", key, e)
        return ""


def nvm_command(ctx: RunContext, *args: str) -> Action:
    argv = ["bash", "-c", NVM_WRAPPER, "_", str(ctx.config.nvm_dir), *args]
    return command(argv, format_argv(["nvm", *args]))


def pyenv_command(ctx: RunContext, *args: str, description: str | None = None) -> Action:
    argv = ["pyenv", *args]
    return command(
        argv,
        description or format_argv(argv),
        env={"PYENV_ROOT": str(ctx.config.pyenv_root)},
    )


def resolve_python_version(ctx: RunContext, announce: bool = False) -> str:
    """The configured Python version, or the newest patch release of its
    minor series when pyenv does not offer the exact one."""
    wanted = ctx.config.python_version
    try:
        listing = ctx.probe.run(["pyenv", "install", "--list"], timeout=60)
    except ProbeError as e:
        logger.debug("Cannot list pyenv versions: %s", e)
        return wanted
    if not listing.ok:
        return wanted

    available = [line.strip() for line in listing.stdout.splitlines()]
    if wanted in available:
        return wanted

    minor = ".".join(wanted.split(".")[:2])
    series = re.compile(rf"^{re.escape(minor)}\.(\d+)$")
    patches = [(int(m.group(1)), v) for v in available if (m := series.match(v))]
    if not patches:
        return wanted

    chosen = max(patches)[1]
    if announce:
        ctx.recorder.warn(f"Python {wanted} is not available from pyenv; using {chosen}")
    return chosen


def app_slug(app: AppSpec) -> str:
    return re.sub(r"[^a-z0-9]+", "-", app.name.lower()).strip("-")


# ── 1. Prerequisites ────────────────────────────────────────────


def _xcode_tools(ctx: RunContext) -> Iterator[Action]:
    ctx.recorder.info("A dialog will appear: click 'Install' to continue.")
    yield command(["xcode-select", "--install"])
    yield wait_until(
        ["xcode-select", "-p"],
        "wait for the Xcode Command Line Tools installation",
        timeout=ctx.config.xcode_wait_timeout,
        interval=ctx.config.xcode_wait_interval,
        remediation="Finish the Xcode Command Line Tools installer, then run devstation setup again.",
    )


def _homebrew(ctx: RunContext) -> Iterator[Action]:
    script = ctx.scratch_dir / "homebrew-install.sh"
    yield download(
        ctx.config.homebrew_install_url, script,
        "download the Homebrew installer",
        timeout=ctx.config.network_timeout,
    )
    ctx.recorder.info("You may be prompted for your password.")
    yield command(["/bin/bash", str(script)], "run the Homebrew installer", interactive=True)

    if ctx.probe.machine() == "arm64":
        yield file_op(
            "append_missing", ctx.home / ".zprofile",
            "add Homebrew to PATH in ~/.zprofile",
            content=f"{BREW_SHELLENV}\n",
            marker="brew shellenv",
        )


# brew "name" / cask "name", optionally followed by options
BREWFILE_ENTRY = re.compile(r"""^\s*(brew|cask)\s+["']([^"']+)["']""")


def brew_prefix(ctx: RunContext) -> Path | None:
    """Homebrew prefix: configured, or two levels above the brew binary."""
    if ctx.config.homebrew_prefix is not None:
        return ctx.config.homebrew_prefix
    found = brew_path(ctx)
    return Path(found).parent.parent if found else None


def brewfile_entries(text: str) -> list[tuple[str, str]]:
    """(kind, name) for every formula and cask; taps and the rest are ignored."""
    entries = []
    for line in text.splitlines():
        m = BREWFILE_ENTRY.match(line)
        if m:
            # tap-qualified names install under their last segment
            entries.append((m.group(1), m.group(2).rsplit("/", 1)[-1]))
    return entries


def _bundle_satisfied(ctx: RunContext) -> bool:
    """Every Brewfile formula has a Cellar entry and every cask a Caskroom one."""
    brewfile = ctx.config.brewfile_path
    prefix = brew_prefix(ctx)
    if prefix is None or not ctx.probe.exists(brewfile):
        return False
    subdir = {"brew": "Cellar", "cask": "Caskroom"}
    return all(
        ctx.probe.is_dir(prefix / subdir[kind] / name)
        for kind, name in brewfile_entries(ctx.probe.read_text(brewfile))
    )


def _brew_bundle(ctx: RunContext) -> Iterator[Action]:
    brewfile = ctx.config.brewfile_path
    if not ctx.probe.exists(brewfile):
        ctx.recorder.info(f"No Brewfile at {brewfile}; creating one with the default packages")
        yield file_op("write", brewfile, f"write default Brewfile to {brewfile}",
                      content=render_brewfile(ctx.config))
    yield brew_command(ctx, "update")
    yield brew_command(ctx, "bundle", f"--file={brewfile}")


# ── 2. Identity & credentials ───────────────────────────────────


def _git_identity(ctx: RunContext) -> Iterator[Action]:
    name = git_value(ctx, "user.name")
    if not name:
        name = ctx.validator.prompt("Full name for git commits", NAME_RULE)
    email = git_value(ctx, "user.email")
    if not email:
        email = ctx.validator.prompt("Email address for git commits", EMAIL_RULE)

    yield command(["git", "config", "--global", "user.name", name])
    yield command(["git", "config", "--global", "user.email", email])


GIT_DEFAULTS = {"init.defaultBranch": "main", "pull.rebase": "false"}


def _git_defaults_set(ctx: RunContext) -> bool:
    return all(ctx.probe.git_config(k) == v for k, v in GIT_DEFAULTS.items())


def _git_defaults(ctx: RunContext) -> Iterator[Action]:
    for key, value in GIT_DEFAULTS.items():
        yield command(["git", "config", "--global", key, value])


def _show_public_key(ctx: RunContext) -> None:
    pub = ctx.config.ssh_public_key_path
    try:
        key = ctx.probe.read_text(pub).strip()
    except ProbeError as e:
        ctx.recorder.warn(f"SSH key exists but its public half is unreadable: {e}")
        return
    ctx.recorder.info(f"Your public key ({pub}):")
    ctx.recorder.info(key)


def _ssh_key(ctx: RunContext) -> Iterator[Action]:
    config = ctx.config
    require(ctx, "ssh-keygen", "It ships with macOS; check your PATH.")

    email = git_value(ctx, "user.email")
    if not email:
        email = ctx.validator.prompt("Email address for the SSH key", EMAIL_RULE)

    yield file_op("mkdir", config.ssh_dir, f"create {config.ssh_dir}", mode=0o700)
    yield command(
        ["ssh-keygen", "-t", "ed25519", "-C", email, "-f", str(config.ssh_key_path), "-N", ""],
        "generate an ed25519 SSH key",
    )
    yield file_op(
        "append_missing", config.ssh_dir / "config",
        "enable keychain integration in ~/.ssh/config",
        content=SSH_CONFIG_BLOCK,
        marker=SSH_IDENTITY_LINE,
    )
    yield command(["ssh-add", "--apple-use-keychain", str(config.ssh_key_path)])
    yield file_op("read", config.ssh_public_key_path, "show the public key", echo_output=True)

    _offer_key_upload(ctx)


def _offer_key_upload(ctx: RunContext) -> None:
    config = ctx.config
    manual = f"Add the public key in {config.ssh_public_key_path} manually at {GITHUB_KEYS_PAGE}"

    if not ctx.validator.confirm("Upload this key to GitHub now?", default=False):
        ctx.recorder.info(manual)
        return

    ctx.recorder.info("Create a token with the 'write:public_key' scope at https://github.com/settings/tokens")

    def make_action(credential) -> Action:
        default = f"{platform.node() or 'workstation'}-{date.today().year}"
        title = ctx.inputs.ask(f"Name for this key on GitHub [{default}]").strip() or default
        return upload_key(
            config.key_upload_url, config.ssh_public_key_path, title, credential,
            timeout=config.network_timeout,
        )

    outcome = ctx.credentials.acquire_and_consume(
        "GitHub personal access token", make_action, fallback=manual,
    )
    if outcome.ok:
        ctx.recorder.info("SSH key upload to GitHub finished")


# ── 3. Shell & dotfiles ─────────────────────────────────────────


def _oh_my_zsh_ready(config: WorkstationConfig) -> Path:
    return config.oh_my_zsh_dir / "oh-my-zsh.sh"


def _oh_my_zsh(ctx: RunContext) -> Iterator[Action]:
    omz = ctx.config.oh_my_zsh_dir
    # the installer refuses to run over an existing $ZSH
    if ctx.probe.exists(omz):
        yield file_op("remove", omz, f"remove the incomplete {omz}")
    script = ctx.scratch_dir / "oh-my-zsh-install.sh"
    yield download(
        ctx.config.oh_my_zsh_install_url, script,
        "download the Oh My Zsh installer",
        timeout=ctx.config.network_timeout,
    )
    yield command(
        ["sh", str(script), "--unattended"],
        "run the Oh My Zsh installer",
        env={"RUNZSH": "no", "CHSH": "no"},
    )


def _plugin_dir(config: WorkstationConfig, name: str) -> Path:
    return config.oh_my_zsh_dir / "custom" / "plugins" / name


def _plugins_present(ctx: RunContext) -> bool:
    return all(ctx.probe.is_dir(_plugin_dir(ctx.config, n)) for n in ctx.config.zsh_plugins)


def _zsh_plugins(ctx: RunContext) -> Iterator[Action]:
    for name, url in ctx.config.zsh_plugins.items():
        dest = _plugin_dir(ctx.config, name)
        if not ctx.probe.is_dir(dest):
            yield command(["git", "clone", "--depth", "1", url, str(dest)])


def _zshrc_current(ctx: RunContext) -> bool:
    zshrc = ctx.home / ".zshrc"
    return ctx.probe.exists(zshrc) and ctx.probe.read_text(zshrc) == render_zshrc(ctx.config)


def _zshrc(ctx: RunContext) -> Iterator[Action]:
    yield file_op("write", ctx.home / ".zshrc", "write ~/.zshrc", content=render_zshrc(ctx.config))


def _dotfiles_linked(ctx: RunContext) -> bool:
    config = ctx.config
    if not ctx.probe.is_dir(config.dotfiles_dir):
        return False
    return all(
        ctx.probe.is_symlink(config.home / name) and ctx.probe.exists(config.home / name)
        for name in config.dotfiles_links
    )


def _dotfiles(ctx: RunContext) -> Iterator[Action]:
    config = ctx.config
    if not ctx.probe.is_dir(config.dotfiles_dir):
        yield command(["git", "clone", config.dotfiles_repo, str(config.dotfiles_dir)])
    for name in config.dotfiles_links:
        yield file_op(
            "symlink", config.home / name, f"link ~/{name}",
            target=str(config.dotfiles_dir / name),
        )


# ── 4. Language runtimes ────────────────────────────────────────


def _node_installed(ctx: RunContext) -> bool:
    versions = ctx.config.nvm_dir / "versions" / "node"
    return ctx.probe.is_dir(versions) and bool(ctx.probe.glob(versions, "v*"))


def _node(ctx: RunContext) -> Iterator[Action]:
    config = ctx.config
    yield file_op("mkdir", config.nvm_dir, f"create {config.nvm_dir}")
    yield nvm_command(ctx, "install", "--lts")
    yield nvm_command(ctx, "alias", "default", "lts/*")
    if config.node_global_packages:
        yield nvm_command(ctx, "exec", "default", "npm", "install", "-g", *config.node_global_packages)


def _python_installed(ctx: RunContext) -> bool:
    version = resolve_python_version(ctx)
    result = ctx.probe.run(["pyenv", "versions", "--bare"])
    return result.ok and version in result.stdout.split()


def _python(ctx: RunContext) -> Iterator[Action]:
    version = resolve_python_version(ctx, announce=True)
    yield pyenv_command(ctx, "install", "--skip-existing", version)
    yield pyenv_command(ctx, "global", version)
    yield pyenv_command(ctx, "exec", "pip", "install", "--upgrade", "pip")
    if ctx.config.python_packages:
        yield pyenv_command(ctx, "exec", "pip", "install", *ctx.config.python_packages)


# ── 5. Applications ─────────────────────────────────────────────


def _install_app(app: AppSpec, ctx: RunContext) -> Iterator[Action]:
    config = ctx.config
    require(ctx, "hdiutil", "Disk images can only be installed on macOS.")

    slug = app_slug(app)
    image = ctx.scratch_dir / f"{slug}.dmg"
    mountpoint = ctx.scratch_dir / f"mnt-{slug}"

    yield download(app.url, image, f"download {app.name}", timeout=config.network_timeout)
    yield command(
        ["hdiutil", "attach", str(image), "-nobrowse", "-quiet", "-mountpoint", str(mountpoint)],
        f"mount the {app.name} disk image",
    )
    ctx.cleanup.track_mount(mountpoint)

    copy = ["cp", "-R", str(mountpoint / app.bundle), f"{config.applications_dir}/"]
    if config.use_sudo_for_apps:
        copy.insert(0, "sudo")
    yield command(copy, f"copy {app.bundle} to {config.applications_dir}",
                  interactive=config.use_sudo_for_apps)

    yield command(["hdiutil", "detach", str(mountpoint), "-quiet"],
                  f"unmount the {app.name} disk image")
    ctx.cleanup.forget_mount(mountpoint)


def _app_step(config: WorkstationConfig, app: AppSpec) -> Step:
    return Step(
        name=f"app-{app_slug(app)}",
        body=functools.partial(_install_app, app),
        guard=path_exists(config.applications_dir / app.bundle),
        fatal=False,
        remediation=f"Install {app.name} manually from {app.url}",
    )


# ── 6. System configuration ─────────────────────────────────────


def _browser_is_default(browser: str) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        result = ctx.probe.run(["defaultbrowser"])
        return result.ok and any(
            line.strip() == f"* {browser}" for line in result.stdout.splitlines()
        )
    return check


def _default_browser(ctx: RunContext) -> Iterator[Action]:
    browser = ctx.config.default_browser
    if ctx.probe.which("defaultbrowser") is None:
        yield brew_command(ctx, "install", "defaultbrowser")
    yield command(["defaultbrowser", browser])


# ── Catalogue ───────────────────────────────────────────────────


def setup_stages(config: WorkstationConfig) -> list[Stage]:
    """The canonical setup stages for ``config``, in dependency order."""
    prerequisites = (
        Step("xcode-cli-tools", _xcode_tools, guard=probe_succeeds(["xcode-select", "-p"])),
        Step("homebrew", _homebrew, guard=brew_installed,
             remediation=HOMEBREW_MANUAL.format(url=config.homebrew_install_url)),
        Step("homebrew-packages", _brew_bundle, guard=_bundle_satisfied),
    )

    identity = (
        Step("git-identity", _git_identity, guard=git_config_set("user.name", "user.email")),
        Step("git-defaults", _git_defaults, guard=_git_defaults_set),
        Step("ssh-key", _ssh_key, guard=path_exists(config.ssh_key_path),
             on_satisfied=_show_public_key),
    )

    shell = [
        Step("oh-my-zsh", _oh_my_zsh, guard=path_exists(_oh_my_zsh_ready(config)),
             remediation=OH_MY_ZSH_MANUAL.format(url=config.oh_my_zsh_install_url)),
        Step("zsh-plugins", _zsh_plugins, guard=_plugins_present, fatal=False,
             remediation="Clone the plugins into ~/.oh-my-zsh/custom/plugins manually."),
    ]
    dotfiles_own_zshrc = config.dotfiles_repo is not None and ".zshrc" in config.dotfiles_links
    if not dotfiles_own_zshrc:
        shell.append(Step("zshrc", _zshrc, guard=_zshrc_current))
    if config.dotfiles_repo is not None:
        shell.append(Step(
            "dotfiles", _dotfiles, guard=_dotfiles_linked, fatal=False,
            remediation=f"Clone {config.dotfiles_repo} to {config.dotfiles_dir} and link the files by hand.",
        ))

    runtimes = (
        Step("node", _node, guard=_node_installed),
        Step("python", _python, guard=_python_installed),
    )

    applications = tuple(_app_step(config, app) for app in config.apps)

    system = ()
    if config.default_browser:
        system = (Step(
            "default-browser", _default_browser,
            guard=_browser_is_default(config.default_browser), fatal=False,
            remediation="Choose the default browser in System Settings → Desktop & Dock.",
        ),)

    return [
        Stage("prerequisites", prerequisites, "Toolchain and package manager"),
        Stage("identity & credentials", identity, "Git identity and SSH key"),
        Stage("shell & dotfiles", tuple(shell), "Zsh, Oh My Zsh and dotfiles"),
        Stage("language runtimes", runtimes, "Node.js and Python"),
        Stage("applications", applications, "Desktop applications"),
        Stage("system configuration", system, "Default browser"),
    ]
