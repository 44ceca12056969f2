"""
Status use case — which setup steps are already satisfied.

Evaluates every setup guard against the live system without running
any step body, so nothing is prompted for and nothing is changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from devstation.core.config.loader import ConfigError, WorkstationConfig, load_config
from devstation.core.context import build_context
from devstation.core.models.step import ExecutionMode, Step
from devstation.core.observability.recorder import Recorder
from devstation.core.services.probe import SystemProbe
from devstation.core.services.prompts import ScriptedInput
from devstation.core.stages.setup import setup_stages

logger = logging.getLogger(__name__)


@dataclass
class StepStatus:
    stage: str
    step: str
    satisfied: bool | None       # None: the probe could not tell
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "step": self.step,
            "satisfied": self.satisfied,
            "detail": self.detail,
        }


@dataclass
class StatusResult:
    """Per-step goal-state snapshot."""

    steps: list[StepStatus] = field(default_factory=list)
    home: Path | None = None
    error: str | None = None

    @property
    def satisfied_count(self) -> int:
        return sum(1 for s in self.steps if s.satisfied)

    @property
    def pending(self) -> list[StepStatus]:
        return [s for s in self.steps if not s.satisfied]

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["home"] = str(self.home)
        result["satisfied"] = self.satisfied_count
        result["total"] = len(self.steps)
        result["steps"] = [s.to_dict() for s in self.steps]
        return result


def _evaluate(step: Step, ctx) -> tuple[bool | None, str]:
    if step.guard is None:
        return False, "always runs"
    try:
        return bool(step.guard(ctx)), ""
    except Exception as e:
        logger.debug("Guard for %s errored: %s", step.name, e)
        return None, str(e)


def get_status(
    config_path: Path | None = None,
    *,
    config: WorkstationConfig | None = None,
    probe: SystemProbe | None = None,
) -> StatusResult:
    """Evaluate every setup guard.

    Args:
        config_path: Optional explicit path to devstation.yml.
        config: Pre-loaded configuration (skips file loading).
        probe: Live-state probe (default: the real host).
    """
    result = StatusResult()

    if config is None:
        try:
            config = load_config(config_path)
        except ConfigError as e:
            result.error = str(e)
            return result

    result.home = config.home
    # Guards only read; an empty input source proves nothing prompts.
    ctx = build_context(
        config, ExecutionMode.SIMULATED,
        run_type="status",
        inputs=ScriptedInput(),
        probe=probe,
        recorder=Recorder(echo=False, channel="status"),
    )

    for stage in setup_stages(config):
        for step in stage.steps:
            satisfied, detail = _evaluate(step, ctx)
            result.steps.append(StepStatus(stage.name, step.name, satisfied, detail))

    return result
