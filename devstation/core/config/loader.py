"""
Configuration loader — reads devstation.yml into a WorkstationConfig.

The file is optional: every key has a default that reproduces the
stock workstation (Homebrew, Oh My Zsh, nvm, pyenv, a few desktop apps).
Installation commands and URLs live here, not in the pipeline.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# Default config filename and search location (relative to home)
CONFIG_FILE = "devstation.yml"
CONFIG_DIR = Path(".config") / "devstation"
CONFIG_ENV_VAR = "DEVSTATION_CONFIG"


class ConfigError(Exception):
    """Raised when the workstation configuration is invalid or unreadable."""


class AppSpec(BaseModel):
    """A desktop application shipped as a disk image."""

    model_config = ConfigDict(extra="forbid")

    name: str
    url: str
    bundle: str            # e.g. "Google Chrome.app"


def _default_apps() -> list[AppSpec]:
    return [
        AppSpec(
            name="PyCharm",
            url="https://download.jetbrains.com/python/pycharm-professional.dmg",
            bundle="PyCharm.app",
        ),
        AppSpec(
            name="ChatGPT",
            url="https://persistent.oaistatic.com/sidekick/public/ChatGPT_Desktop_public_latest.dmg",
            bundle="ChatGPT.app",
        ),
        AppSpec(
            name="Google Chrome",
            url="https://dl.google.com/chrome/mac/stable/GGRO/googlechrome.dmg",
            bundle="Google Chrome.app",
        ),
    ]


class WorkstationConfig(BaseModel):
    """Everything the stage catalogues need to build their actions."""

    model_config = ConfigDict(extra="forbid")

    home: Path = Field(default_factory=Path.home)
    applications_dir: Path = Path("/Applications")

    # Package manager
    brewfile: Path | None = None
    homebrew_prefix: Path | None = None    # detected from the brew binary when unset
    brew_packages: list[str] = Field(default_factory=lambda: [
        "git", "node", "python@3.12", "pyenv", "nvm",
        "wget", "curl", "tree", "jq", "defaultbrowser",
    ])
    brew_casks: list[str] = Field(default_factory=lambda: [
        "visual-studio-code", "iterm2", "docker",
    ])
    homebrew_install_url: str = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
    homebrew_uninstall_url: str = "https://raw.githubusercontent.com/Homebrew/install/HEAD/uninstall.sh"

    # Shell
    oh_my_zsh_install_url: str = "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
    zsh_plugins: dict[str, str] = Field(default_factory=lambda: {
        "zsh-autosuggestions": "https://github.com/zsh-users/zsh-autosuggestions",
        "zsh-syntax-highlighting": "https://github.com/zsh-users/zsh-syntax-highlighting",
    })
    dotfiles_repo: str | None = None
    dotfiles_links: list[str] = Field(default_factory=lambda: [".gitconfig", ".zshrc"])

    # Runtimes
    python_version: str = "3.12.7"
    python_packages: list[str] = Field(default_factory=lambda: [
        "virtualenv", "black", "flake8", "pytest", "requests",
    ])
    node_global_packages: list[str] = Field(default_factory=lambda: [
        "yarn", "typescript", "nodemon", "create-react-app",
    ])

    # Applications
    apps: list[AppSpec] = Field(default_factory=_default_apps)
    manual_apps: dict[str, str] = Field(default_factory=lambda: {
        "Windsurf": "https://windsurf.dev",
        "Docker Desktop": "https://www.docker.com/products/docker-desktop",
    })
    use_sudo_for_apps: bool = True

    # System
    default_browser: str | None = "chrome"

    # Identity
    key_upload_url: str = "https://api.github.com/user/keys"

    # Timeouts (seconds)
    xcode_wait_timeout: int = Field(default=1800, gt=0)
    xcode_wait_interval: int = Field(default=5, gt=0)
    network_timeout: int = Field(default=60, gt=0)

    @field_validator("home", "applications_dir", "brewfile", "homebrew_prefix", mode="before")
    @classmethod
    def _expand_user(cls, value: object) -> object:
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    # ── Derived paths ───────────────────────────────────────────

    @property
    def brewfile_path(self) -> Path:
        return self.brewfile or self.home / "Brewfile"

    @property
    def ssh_dir(self) -> Path:
        return self.home / ".ssh"

    @property
    def ssh_key_path(self) -> Path:
        return self.ssh_dir / "id_ed25519"

    @property
    def ssh_public_key_path(self) -> Path:
        return self.ssh_dir / "id_ed25519.pub"

    @property
    def oh_my_zsh_dir(self) -> Path:
        return self.home / ".oh-my-zsh"

    @property
    def dotfiles_dir(self) -> Path:
        return self.home / "dotfiles"

    @property
    def nvm_dir(self) -> Path:
        return self.home / ".nvm"

    @property
    def pyenv_root(self) -> Path:
        return self.home / ".pyenv"

    def log_path(self, run_type: str) -> Path:
        """Well-known run log location: ~/setup.log, ~/teardown.log."""
        return self.home / f"{run_type}.log"


def find_config_file(home: Path | None = None) -> Path | None:
    """Locate devstation.yml: $DEVSTATION_CONFIG, then ~/.config/devstation/.

    Returns:
        Path to the config file, or None if there is none.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()

    candidate = (home or Path.home()) / CONFIG_DIR / CONFIG_FILE
    if candidate.is_file():
        return candidate
    return None


def load_config(path: Path | None = None) -> WorkstationConfig:
    """Load and validate the workstation configuration.

    Args:
        path: Explicit path to devstation.yml. If None, searches the
            default locations and falls back to built-in defaults.

    Returns:
        Validated WorkstationConfig.

    Raises:
        ConfigError: If the file is missing (when given explicitly) or invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found — using defaults", CONFIG_FILE)
            return WorkstationConfig()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading workstation config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = WorkstationConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid workstation configuration: {e}") from e

    logger.info("Loaded config from %s (home=%s)", path, config.home)
    return config
