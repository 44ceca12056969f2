"""
System probe — read-only queries against live host state.

Guards and stage bodies ask the probe "does X already hold?" instead of
touching the system themselves. Nothing here mutates anything: probes
only resolve binaries, stat paths, read files and run query commands
(``git config --get``, ``xcode-select -p``, ``pyenv versions``).

Probe commands that cannot run raise ProbeError; guards treat that as
"unknown" and fail open.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_PROBE_TIMEOUT = 15


class ProbeError(Exception):
    """A probe could not determine the state it was asked about."""


@dataclass(frozen=True)
class ProbeResult:
    returncode: int
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class SystemProbe:
    """Live host state."""

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def exists(self, path: Path) -> bool:
        return path.exists() or path.is_symlink()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def is_symlink(self, path: Path) -> bool:
        return path.is_symlink()

    def read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ProbeError(f"Cannot read {path}: {e}") from e

    def glob(self, directory: Path, pattern: str) -> list[Path]:
        return sorted(directory.glob(pattern))

    def run(self, argv: list[str], timeout: int = _PROBE_TIMEOUT) -> ProbeResult:
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise ProbeError(f"Probe command not found: {argv[0]}") from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeError(f"Probe {argv[0]} failed: {e}") from e
        return ProbeResult(returncode=result.returncode, stdout=result.stdout.strip())

    def git_config(self, key: str) -> str:
        """Global git config value, or "" when unset."""
        result = self.run(["git", "config", "--global", "--get", key])
        # exit 1 == key not set
        if result.returncode == 1:
            return ""
        if not result.ok:
            raise ProbeError(f"git config {key} exited {result.returncode}")
        return result.stdout

    def machine(self) -> str:
        return platform.machine()

    def env(self, name: str) -> str | None:
        return os.environ.get(name)
