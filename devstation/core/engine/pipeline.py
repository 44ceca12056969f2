"""
Step pipeline — the ordered, guarded, cleanup-protected run loop.

Flow (setup):
    for each stage:   report "k/N — name"
      for each step:  guard satisfied? → skip (zero executor calls)
                      else run body actions in declaration order
                      failed action → fatal step: cleanup + exit 1
                                      network failure or
                                      non-fatal step: warn, continue

Only two outcomes ever escape a step: continue, or abort the run.

TeardownWorkflow mirrors the loop over the teardown categories, but
admits each category through a confirmation gate (auto-approved in
force mode) and reads guard satisfaction as "already absent".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from devstation.core.engine.guards import PreconditionMissing, should_run
from devstation.core.models.action import FailureKind, Receipt
from devstation.core.models.step import (
    ConfirmationDecision,
    ExecutionMode,
    ProgressState,
    Stage,
    Step,
    number_stages,
)
from devstation.core.services.validation import ValidationExhausted

if TYPE_CHECKING:
    from devstation.core.context import RunContext

logger = logging.getLogger(__name__)


class StepOutcome(str, Enum):
    RAN = "ran"
    SATISFIED = "satisfied"      # goal state already held
    ABSENT = "absent"            # teardown: nothing left to remove
    FAILED = "failed"            # non-fatal failure, run continued
    DECLINED = "declined"        # teardown category not confirmed


@dataclass
class StepResult:
    stage: str
    step: str
    outcome: StepOutcome
    actions: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "step": self.step,
            "outcome": self.outcome.value,
            "actions": self.actions,
            "error": self.error,
        }


@dataclass
class PipelineReport:
    """Per-step outcomes of one run."""

    run_type: str = "setup"
    mode: ExecutionMode = ExecutionMode.LIVE
    results: list[StepResult] = field(default_factory=list)
    executor_calls: int = 0

    def count(self, outcome: StepOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def outcome_of(self, step_name: str) -> StepOutcome | None:
        for r in self.results:
            if r.step == step_name:
                return r.outcome
        return None

    @property
    def failed(self) -> int:
        return self.count(StepOutcome.FAILED)

    @property
    def summary(self) -> str:
        parts = [f"{self.count(o)} {o.value}" for o in StepOutcome if self.count(o)]
        return ", ".join(parts) or "nothing to do"

    def to_dict(self) -> dict:
        return {
            "run_type": self.run_type,
            "mode": self.mode.value,
            "summary": self.summary,
            "executor_calls": self.executor_calls,
            "results": [r.to_dict() for r in self.results],
        }


class Pipeline:
    """Runs setup stages in order."""

    run_type = "setup"
    satisfied_outcome = StepOutcome.SATISFIED
    satisfied_message = "{step}: already satisfied"

    def __init__(self, ctx: RunContext):
        self._ctx = ctx
        self.progress: ProgressState | None = None

    def run(self, stages: Sequence[Stage]) -> PipelineReport:
        """Run every stage; aborts the process on a fatal failure."""
        ctx = self._ctx
        numbered = number_stages(stages)
        self.progress = ProgressState(total=len(numbered))
        report = PipelineReport(run_type=self.run_type, mode=ctx.mode)
        calls_before = ctx.executor.calls

        with ctx.cleanup:
            self._before()
            for stage in numbered:
                self.progress.advance()
                ctx.recorder.info(self.progress.label(stage.name))
                if not self._admit(stage):
                    report.results.extend(
                        StepResult(stage.name, step.name, StepOutcome.DECLINED)
                        for step in stage.steps
                    )
                    continue
                for step in stage.steps:
                    report.results.append(self._run_step(stage, step))

        report.executor_calls = ctx.executor.calls - calls_before
        ctx.recorder.info(f"{self.run_type.capitalize()} finished: {report.summary}")
        return report

    # ── Hooks overridden by teardown ────────────────────────────

    def _before(self) -> None:
        pass

    def _admit(self, stage: Stage) -> bool:
        return True

    # ── Step execution ──────────────────────────────────────────

    def _run_step(self, stage: Stage, step: Step) -> StepResult:
        ctx = self._ctx

        if not should_run(step, ctx):
            ctx.recorder.info(self.satisfied_message.format(step=step.name))
            if step.on_satisfied is not None:
                step.on_satisfied(ctx)
            return StepResult(stage.name, step.name, self.satisfied_outcome)

        count = 0
        actions = step.body(ctx)
        try:
            for action in actions:
                count += 1
                receipt = ctx.executor.run(action)
                if receipt.failed:
                    return self._step_failed(stage, step, receipt, count)
        except PreconditionMissing as e:
            ctx.recorder.error(f"{step.name}: missing prerequisite: {e}")
            ctx.cleanup.abort(1, f"{step.name}: {e}")
        except ValidationExhausted as e:
            ctx.cleanup.abort(1, f"{step.name}: {e}")
        finally:
            close = getattr(actions, "close", None)
            if close is not None:
                close()

        ctx.recorder.info(f"{step.name}: done")
        return StepResult(stage.name, step.name, StepOutcome.RAN, actions=count)

    def _step_failed(self, stage: Stage, step: Step, receipt: Receipt, count: int) -> StepResult:
        ctx = self._ctx
        error = receipt.error or "unknown error"

        # network failures degrade to the manual fallback, even in fatal steps
        fatal = step.fatal and receipt.kind is not FailureKind.NETWORK
        if fatal or receipt.kind is FailureKind.PRECONDITION:
            ctx.recorder.error(f"{step.name} failed: {error}")
            if step.remediation:
                ctx.recorder.error(step.remediation)
            ctx.cleanup.abort(1, f"{step.name} failed")

        ctx.recorder.warn(f"{step.name} failed, continuing: {error}")
        if step.remediation:
            ctx.recorder.warn(step.remediation)
        return StepResult(stage.name, step.name, StepOutcome.FAILED, actions=count, error=error)


class TeardownWorkflow(Pipeline):
    """Reverse pipeline gated by per-category confirmation."""

    run_type = "teardown"
    satisfied_outcome = StepOutcome.ABSENT
    satisfied_message = "{step}: already absent"

    OVERALL_PROMPT = (
        "This will uninstall development tools, remove dotfiles, "
        "and undo setup changes. Continue?"
    )

    def __init__(self, ctx: RunContext, force: bool = False):
        super().__init__(ctx)
        self._force = force

    @property
    def force(self) -> bool:
        return self._force

    def confirm(self, description: str) -> ConfirmationDecision:
        """Ask whether to proceed; force mode approves without reading."""
        if self._force:
            self._ctx.recorder.info(f"Auto-confirmed (force): {description}")
            return ConfirmationDecision.PROCEED
        if self._ctx.validator.confirm(description, default=False):
            return ConfirmationDecision.PROCEED
        return ConfirmationDecision.SKIP

    def _before(self) -> None:
        if self.confirm(self.OVERALL_PROMPT) is ConfirmationDecision.SKIP:
            self._ctx.recorder.warn("Teardown canceled.")
            self._ctx.cleanup.abort(1, "teardown canceled by user")

    def _admit(self, stage: Stage) -> bool:
        description = stage.description or f"Remove {stage.name}?"
        if self.confirm(description) is ConfirmationDecision.SKIP:
            self._ctx.recorder.info(f"Skipping {stage.name} (not confirmed)")
            return False
        return True
