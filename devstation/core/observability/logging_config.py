"""
Diagnostic logging for the devstation CLI.

Two independent streams exist while a run is in progress:

    diagnostics   module loggers (``devstation.*``) → stderr, optional file
    run log       the Recorder's ``devstation.run.*`` loggers → ~/setup.log

Only the first is configured here. Run-log loggers do not propagate,
so nothing set up in this module duplicates or hides a run-log line.

Level precedence:
    --debug  >  --verbose  >  --quiet  >  $DEVSTATION_LOG_LEVEL  >  WARNING
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping

ROOT_LOGGER = "devstation"

ENV_LEVEL = "DEVSTATION_LOG_LEVEL"
ENV_FILE = "DEVSTATION_LOG_FILE"
ENV_FILE_LEVEL = "DEVSTATION_LOG_FILE_LEVEL"

_FMT_PLAIN = "%(levelname)s: %(message)s"
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s"
_DATEFMT_SHORT = "%H:%M:%S"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# set on handlers this module owns, so a second call can replace them
_OWNED = "_devstation_diagnostics"


def resolve_level(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if environ is None else environ
    return env.get(ENV_LEVEL) or "WARNING"


def parse_level(level: str | None) -> int:
    """Level name → numeric constant; anything unknown means WARNING."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> logging.Logger:
    """Attach diagnostic handlers to the ``devstation`` logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        level: Console level name.
        log_file: Optional diagnostics file (never the run log).
        log_file_level: Level for the file; defaults to ``level``.

    Returns:
        The configured ``devstation`` logger.
    """
    console_level = parse_level(level)
    logger = logging.getLogger(ROOT_LOGGER)
    _drop_owned(logger)

    if console_level <= logging.DEBUG:
        console_fmt = logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_SHORT)
    elif console_level <= logging.INFO:
        console_fmt = logging.Formatter(_FMT_VERBOSE, datefmt=_DATEFMT_SHORT)
    else:
        console_fmt = logging.Formatter(_FMT_PLAIN)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(console_fmt)
    _own(logger, console)

    effective = console_level
    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else console_level
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_FILE))
        _own(logger, fh)
        effective = min(effective, file_level)

    logger.setLevel(effective)
    logger.propagate = False

    # a broken stderr must not turn into a traceback mid-install
    logging.raiseExceptions = False
    return logger


def _own(logger: logging.Logger, handler: logging.Handler) -> None:
    setattr(handler, _OWNED, True)
    logger.addHandler(handler)


def _drop_owned(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _OWNED, False):
            logger.removeHandler(handler)
            handler.close()
