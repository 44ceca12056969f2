"""
Teardown use case — undo what setup installed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from devstation.adapters.registry import AdapterRegistry
from devstation.core.config.loader import ConfigError, WorkstationConfig, load_config
from devstation.core.context import build_context
from devstation.core.engine.pipeline import PipelineReport, TeardownWorkflow
from devstation.core.models.step import ExecutionMode
from devstation.core.services.probe import SystemProbe
from devstation.core.services.prompts import InputSource
from devstation.core.stages.teardown import teardown_stages

logger = logging.getLogger(__name__)


@dataclass
class TeardownResult:
    """Result of a teardown run."""

    report: PipelineReport | None = None
    log_path: Path | None = None
    forced: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["log_path"] = str(self.log_path) if self.log_path else None
        result["forced"] = self.forced
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_teardown(
    config_path: Path | None = None,
    force: bool = False,
    *,
    config: WorkstationConfig | None = None,
    inputs: InputSource | None = None,
    probe: SystemProbe | None = None,
    registry: AdapterRegistry | None = None,
    echo: bool = True,
    stream: IO[str] | None = None,
) -> TeardownResult:
    """Run the teardown workflow.

    Args:
        config_path: Optional explicit path to devstation.yml.
        force: Auto-confirm every category without reading input.
        config: Pre-loaded configuration (skips file loading).
        inputs: Interactive input source (default: the terminal).
        probe: Live-state probe (default: the real host).
        registry: Adapter registry (default: all real adapters).
        echo: Mirror the run log to the terminal.
        stream: Terminal stream for the echo.
    """
    result = TeardownResult(forced=force)

    if config is None:
        try:
            config = load_config(config_path)
        except ConfigError as e:
            result.error = str(e)
            return result

    ctx = build_context(
        config, ExecutionMode.LIVE,
        run_type="teardown",
        inputs=inputs,
        probe=probe,
        registry=registry,
        echo=echo,
        stream=stream,
    )
    result.log_path = ctx.recorder.path

    try:
        ctx.recorder.info(f"Starting workstation teardown (log: {ctx.recorder.path})")
        result.report = TeardownWorkflow(ctx, force=force).run(teardown_stages(config, force=force))
        ctx.recorder.info("Teardown complete. Please restart your terminal session.")
    finally:
        ctx.recorder.close()

    return result
