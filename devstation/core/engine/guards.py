"""
Idempotency guards — "does this step's goal state already hold?"

A guard is a side-effect-free predicate over the SystemProbe. The
pipeline asks ``should_run(step, ctx)`` before executing anything:

    goal state holds     → skip, zero executor calls
    goal state missing   → run
    probe itself errors  → run (fail open); the step's own action will
                           surface the real problem instead of it being
                           silently skipped

The factories below build the predicates the stage catalogues use.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from devstation.core.models.step import GoalCheck, Step

if TYPE_CHECKING:
    from devstation.core.context import RunContext

logger = logging.getLogger(__name__)


class PreconditionMissing(Exception):
    """A tool the step cannot work without is not installed."""


def should_run(step: Step, ctx: RunContext) -> bool:
    """Whether ``step`` still has work to do."""
    if step.guard is None:
        return True
    try:
        satisfied = step.guard(ctx)
    except Exception as e:
        logger.debug("Guard for %s errored: %s", step.name, e)
        ctx.recorder.info(f"{step.name}: could not determine current state ({e}); running it")
        return True
    return not satisfied


def require(ctx: RunContext, program: str, hint: str = "") -> str:
    """Resolve ``program`` on PATH or raise PreconditionMissing."""
    path = ctx.probe.which(program)
    if path is None:
        message = f"{program} not found on PATH"
        raise PreconditionMissing(f"{message}. {hint}" if hint else message)
    return path


# ── Guard factories ─────────────────────────────────────────────


def command_available(program: str) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        return ctx.probe.which(program) is not None
    return check


def path_exists(path: Path) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        return ctx.probe.exists(path)
    return check


def paths_absent(*paths: Path) -> GoalCheck:
    """Teardown goal: none of the paths exist any more."""
    def check(ctx: RunContext) -> bool:
        return not any(ctx.probe.exists(p) for p in paths)
    return check


def command_absent(program: str) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        return ctx.probe.which(program) is None
    return check


def git_config_set(*keys: str) -> GoalCheck:
    """Every key has a non-empty global value."""
    def check(ctx: RunContext) -> bool:
        return all(ctx.probe.git_config(key) for key in keys)
    return check


def probe_succeeds(argv: list[str]) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        return ctx.probe.run(argv).ok
    return check


def probe_output_contains(argv: list[str], needle: str) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        result = ctx.probe.run(argv)
        return result.ok and needle in result.stdout.split()
    return check


def file_contains(path: Path, needle: str) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        return ctx.probe.exists(path) and needle in ctx.probe.read_text(path)
    return check


def all_of(*checks: GoalCheck) -> GoalCheck:
    def check(ctx: RunContext) -> bool:
        return all(c(ctx) for c in checks)
    return check


def file_lacks(path: Path, needle: str) -> GoalCheck:
    """Teardown goal: the file is gone or no longer mentions ``needle``."""
    def check(ctx: RunContext) -> bool:
        return not ctx.probe.exists(path) or needle not in ctx.probe.read_text(path)
    return check
