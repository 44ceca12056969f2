"""
Step and Stage models — the shape of a provisioning pipeline.

A Stage is one numbered entry in the progress display ("2/6 — identity").
It holds an ordered tuple of Steps. A Step is the guarded unit: its
guard says whether the goal state already holds, its body lazily yields
the Actions that establish it.

Steps are defined once per run, immutable, and never persisted —
idempotency is re-derived from live system state on every run.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from devstation.core.models.action import Action

if TYPE_CHECKING:
    from devstation.core.context import RunContext


class ExecutionMode(str, Enum):
    """Process-wide execution mode, fixed at start-up."""

    LIVE = "live"
    SIMULATED = "simulated"


class ConfirmationDecision(str, Enum):
    """Per-category teardown decision."""

    PROCEED = "proceed"
    SKIP = "skip"


GoalCheck = Callable[["RunContext"], bool]
StepBody = Callable[["RunContext"], Iterable[Action]]
StepHook = Callable[["RunContext"], None]


@dataclass(frozen=True)
class Step:
    """One guarded unit of provisioning work.

    Attributes:
        name: Identifier used in logs and status output.
        body: Callable returning the step's Actions in declaration order.
            Usually a generator, so interactive reads happen between
            actions and later actions can depend on earlier answers.
        guard: Returns True when the goal state already holds.
            None means "always run".
        fatal: Whether a failure aborts the whole pipeline.
        remediation: Manual fallback shown when a non-fatal step fails.
        on_satisfied: Read-only report hook run when the guard skips.
        ordinal: Position inside the owning stage (1-based).
    """

    name: str
    body: StepBody
    guard: GoalCheck | None = None
    fatal: bool = True
    remediation: str = ""
    on_satisfied: StepHook | None = None
    ordinal: int = 0


@dataclass(frozen=True)
class Stage:
    """A numbered group of steps — one line of progress output."""

    name: str
    steps: tuple[Step, ...]
    description: str = ""
    ordinal: int = 0


def number_stages(stages: Sequence[Stage]) -> list[Stage]:
    """Assign 1-based ordinals to stages and to the steps inside them."""
    numbered = []
    for i, stage in enumerate(stages, start=1):
        steps = tuple(
            dataclasses.replace(step, ordinal=j)
            for j, step in enumerate(stage.steps, start=1)
        )
        numbered.append(dataclasses.replace(stage, ordinal=i, steps=steps))
    return numbered


@dataclass
class ProgressState:
    """Current stage index out of the total. Mutated only via advance()."""

    total: int
    current: int = 0

    def advance(self) -> int:
        if self.current >= self.total:
            raise RuntimeError(f"Progress already complete ({self.total}/{self.total})")
        self.current += 1
        return self.current

    def label(self, name: str) -> str:
        return f"{self.current}/{self.total} — {name}"
