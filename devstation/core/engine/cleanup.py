"""
Cleanup handler — one release function for every way a run can end badly.

Entered as a context manager at pipeline start. While active it:

    - owns SIGINT / SIGTERM (previous handlers restored on exit)
    - tracks transient resources acquired mid-run: mounted disk images
      and the run's scratch directory

``release`` detaches tracked mounts, deletes scratch files, records the
final failure entry and marks itself done; calling it again is a no-op.
It is reached from three places:

    - a fatal step or exhausted validation  → ``abort``
    - a signal                              → ``abort(128 + signum)``
    - an unexpected exception leaving the ``with`` block

Effects go through the Executor like everything else, so a dry run
only records what it would have released.
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from types import FrameType
from typing import Any, NoReturn

from devstation.core.engine.actions import command, file_op
from devstation.core.engine.executor import Executor
from devstation.core.observability.recorder import Recorder

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CleanupHandler:
    """Guaranteed release of run-scoped resources."""

    def __init__(self, executor: Executor, recorder: Recorder, scratch_dir: Path):
        self._executor = executor
        self._recorder = recorder
        self._scratch_dir = scratch_dir
        self._mounts: list[Path] = []
        self._released = False
        self._previous: dict[int, Any] = {}

    @property
    def scratch_dir(self) -> Path:
        return self._scratch_dir

    @property
    def mounts(self) -> list[Path]:
        return list(self._mounts)

    @property
    def released(self) -> bool:
        return self._released

    # ── Resource tracking ───────────────────────────────────────

    def track_mount(self, mountpoint: Path) -> None:
        if mountpoint not in self._mounts:
            self._mounts.append(mountpoint)

    def forget_mount(self, mountpoint: Path) -> None:
        """The owning step detached it itself."""
        if mountpoint in self._mounts:
            self._mounts.remove(mountpoint)

    # ── Lifecycle ───────────────────────────────────────────────

    def __enter__(self) -> CleanupHandler:
        for sig in HANDLED_SIGNALS:
            try:
                self._previous[sig] = signal.signal(sig, self._on_signal)
            except ValueError:
                # signal.signal only works from the main thread
                logger.debug("Cannot install handler for %s outside the main thread", sig)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                self.finish()
            elif issubclass(exc_type, SystemExit):
                code = exc.code if isinstance(exc.code, int) else 1
                if code == 0:
                    self.finish()
                else:
                    self.release(f"exit {code}", code)
            else:
                self.release(f"unexpected error: {exc}", 1)
        finally:
            self._restore_signals()
        return False

    def finish(self) -> None:
        """Normal completion: drop scratch files, no failure entry."""
        self._detach_mounts()
        self._remove_scratch()

    def release(self, reason: str, status: int) -> None:
        """Release everything and record the failure. Re-entrant."""
        if self._released:
            return
        self._released = True
        self._detach_mounts()
        self._remove_scratch()
        self._recorder.error(f"Run failed: {reason} (exit {status})")

    def abort(self, status: int, reason: str) -> NoReturn:
        """Release, then terminate with ``status``."""
        self.release(reason, status)
        raise SystemExit(status)

    # ── Internals ───────────────────────────────────────────────

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        self.abort(128 + signum, f"interrupted by {name}")

    def _detach_mounts(self) -> None:
        while self._mounts:
            mountpoint = self._mounts.pop()
            self._executor.run(command(
                ["hdiutil", "detach", str(mountpoint), "-force", "-quiet"],
                f"detach {mountpoint}",
            ))

    def _remove_scratch(self) -> None:
        if self._scratch_dir.exists():
            self._executor.run(file_op(
                "remove", self._scratch_dir, f"remove scratch files in {self._scratch_dir}",
            ))

    def _restore_signals(self) -> None:
        for sig, previous in self._previous.items():
            try:
                signal.signal(sig, previous)
            except (ValueError, TypeError):
                logger.debug("Could not restore handler for %s", sig)
        self._previous.clear()
