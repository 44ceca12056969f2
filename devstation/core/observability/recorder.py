"""
Run recorder — the append-only log of one setup or teardown run.

Every component writes user-visible events through the Recorder.
Each entry is kept in memory (for summaries and tests) and emitted
through a dedicated, non-propagating logger to two handlers:

    - the run log file, one ``[timestamp] [LEVEL] message`` per line
    - the terminal, message only

The file handler flushes on every record, so the order of lines in
the file is the order in which components wrote them.

Secrets are never passed to the recorder.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import IO, Literal

from pydantic import BaseModel, Field

Level = Literal["INFO", "WARN", "ERROR"]

_LEVELS: dict[str, int] = {
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

_FMT_FILE = "[%(entry_ts)s] [%(entry_level)s] %(message)s"
_FMT_CONSOLE = "%(message)s"


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%dT%H:%M:%S")


class LogEntry(BaseModel):
    """One recorded event."""

    timestamp: str = Field(default_factory=_timestamp)
    level: Level = "INFO"
    message: str

    def render(self) -> str:
        return f"[{self.timestamp}] [{self.level}] {self.message}"


class Recorder:
    """Append-only event log for a single run.

    Args:
        log_path: Run log file. None keeps the log in memory only.
        echo: Whether to mirror messages to the terminal.
        stream: Terminal stream (default: stdout).
        channel: Logger name suffix ("setup", "teardown").
    """

    def __init__(
        self,
        log_path: Path | None = None,
        echo: bool = True,
        stream: IO[str] | None = None,
        channel: str = "run",
    ):
        self._path = log_path
        self._entries: list[LogEntry] = []
        self._logger = logging.getLogger(f"devstation.run.{channel}")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._drop_handlers()

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            fh.setFormatter(logging.Formatter(_FMT_FILE))
            self._logger.addHandler(fh)

        if echo:
            console = logging.StreamHandler(stream or sys.stdout)
            console.setFormatter(logging.Formatter(_FMT_CONSOLE))
            self._logger.addHandler(console)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def entries(self) -> list[LogEntry]:
        """Snapshot of all entries, oldest first."""
        return list(self._entries)

    def messages(self, level: Level | None = None) -> list[str]:
        return [e.message for e in self._entries if level is None or e.level == level]

    def info(self, message: str) -> None:
        self._record("INFO", message)

    def warn(self, message: str) -> None:
        self._record("WARN", message)

    def error(self, message: str) -> None:
        self._record("ERROR", message)

    def close(self) -> None:
        """Detach and close all handlers."""
        self._drop_handlers()

    def _record(self, level: Level, message: str) -> None:
        entry = LogEntry(level=level, message=message)
        self._entries.append(entry)
        self._logger.log(
            _LEVELS[level],
            message,
            extra={"entry_ts": entry.timestamp, "entry_level": entry.level},
        )

    def _drop_handlers(self) -> None:
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
