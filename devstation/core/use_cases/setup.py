"""
Setup use case — provision the workstation.

Loads the configuration, wires a RunContext and runs the six setup
stages through the Pipeline. A fatal step, exhausted validation or an
interrupt ends the process from inside the pipeline (SystemExit with
the run's status); everything else comes back as a SetupResult.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from devstation.adapters.registry import AdapterRegistry
from devstation.core.config.loader import ConfigError, WorkstationConfig, load_config
from devstation.core.context import build_context
from devstation.core.engine.pipeline import Pipeline, PipelineReport
from devstation.core.models.step import ExecutionMode
from devstation.core.services.probe import SystemProbe
from devstation.core.services.prompts import InputSource
from devstation.core.stages.setup import setup_stages

logger = logging.getLogger(__name__)


@dataclass
class SetupResult:
    """Result of a setup run."""

    report: PipelineReport | None = None
    log_path: Path | None = None
    manual_apps: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["log_path"] = str(self.log_path) if self.log_path else None
        result["manual_apps"] = dict(self.manual_apps)
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_setup(
    config_path: Path | None = None,
    dry_run: bool = False,
    *,
    config: WorkstationConfig | None = None,
    inputs: InputSource | None = None,
    probe: SystemProbe | None = None,
    registry: AdapterRegistry | None = None,
    echo: bool = True,
    stream: IO[str] | None = None,
) -> SetupResult:
    """Run the setup pipeline.

    Args:
        config_path: Optional explicit path to devstation.yml.
        dry_run: Record what would run instead of running it.
        config: Pre-loaded configuration (skips file loading).
        inputs: Interactive input source (default: the terminal).
        probe: Live-state probe (default: the real host).
        registry: Adapter registry (default: all real adapters).
        echo: Mirror the run log to the terminal.
        stream: Terminal stream for the echo.

    Returns:
        SetupResult with the pipeline report.
    """
    result = SetupResult()

    if config is None:
        try:
            config = load_config(config_path)
        except ConfigError as e:
            result.error = str(e)
            return result

    mode = ExecutionMode.SIMULATED if dry_run else ExecutionMode.LIVE
    ctx = build_context(
        config, mode,
        run_type="setup",
        inputs=inputs,
        probe=probe,
        registry=registry,
        echo=echo,
        stream=stream,
    )
    result.log_path = ctx.recorder.path
    result.manual_apps = dict(config.manual_apps)

    try:
        if dry_run:
            ctx.recorder.info("Dry run: nothing will be changed")
        ctx.recorder.info(f"Starting workstation setup (log: {ctx.recorder.path})")

        result.report = Pipeline(ctx).run(setup_stages(config))

        for name, url in config.manual_apps.items():
            ctx.recorder.info(f"Install manually: {name} ({url})")
        ctx.recorder.info("Restart your terminal or run: source ~/.zshrc")
    finally:
        ctx.recorder.close()

    return result
