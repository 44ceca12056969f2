"""
Run context — everything one setup or teardown run shares.

The context is built once at startup by the entry point and passed
explicitly to every component call: guards, step bodies, the pipeline
and the cleanup handler. There is no module-level state; a test builds
its own context around fakes:

    - CLI:    use_cases.setup  → build_context(config, mode, ...)
    - Tests:  conftest         → build_context(config, mode, inputs=ScriptedInput(...),
                                               probe=FakeProbe(...), registry=mock_registry)

The execution mode is stored here but only the Executor reads it.
"""

from __future__ import annotations

import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import IO

from devstation.adapters import default_registry
from devstation.adapters.registry import AdapterRegistry
from devstation.core.config.loader import WorkstationConfig
from devstation.core.engine.cleanup import CleanupHandler
from devstation.core.engine.executor import Executor
from devstation.core.models.step import ExecutionMode
from devstation.core.observability.recorder import Recorder
from devstation.core.services.credentials import CredentialHandler
from devstation.core.services.probe import SystemProbe
from devstation.core.services.prompts import ConsoleInput, InputSource
from devstation.core.services.validation import Validator


def generate_run_id() -> str:
    """Unique, sortable identifier for one run."""
    now = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{now}-{uuid.uuid4().hex[:6]}"


@dataclass
class RunContext:
    """Explicitly threaded state for a single run."""

    config: WorkstationConfig
    mode: ExecutionMode
    recorder: Recorder
    inputs: InputSource
    probe: SystemProbe
    executor: Executor
    validator: Validator
    credentials: CredentialHandler
    cleanup: CleanupHandler
    run_type: str = "setup"
    run_id: str = field(default_factory=generate_run_id)

    @property
    def home(self) -> Path:
        return self.config.home

    @property
    def scratch_dir(self) -> Path:
        return self.cleanup.scratch_dir


def scratch_path(run_id: str) -> Path:
    """Per-run scratch directory (not created until something is written)."""
    return Path(tempfile.gettempdir()) / f"devstation-{run_id}"


def build_context(
    config: WorkstationConfig,
    mode: ExecutionMode = ExecutionMode.LIVE,
    *,
    run_type: str = "setup",
    inputs: InputSource | None = None,
    probe: SystemProbe | None = None,
    registry: AdapterRegistry | None = None,
    recorder: Recorder | None = None,
    log_path: Path | None = None,
    echo: bool = True,
    stream: IO[str] | None = None,
) -> RunContext:
    """Wire up a RunContext.

    Args:
        config: Workstation configuration.
        mode: LIVE or SIMULATED, fixed for the whole run.
        run_type: "setup" or "teardown" — selects the log file.
        inputs: Interactive input source (default: the terminal).
        probe: Live-state probe (default: the real host).
        registry: Adapter registry (default: all real adapters).
        recorder: Pre-built recorder; otherwise one is created writing to
            ``log_path`` (default: the config's well-known log path).
        echo: Mirror the run log to the terminal.
        stream: Terminal stream for the echo.
    """
    run_id = generate_run_id()
    if recorder is None:
        recorder = Recorder(
            log_path=log_path or config.log_path(run_type),
            echo=echo,
            stream=stream,
            channel=run_type,
        )
    inputs = inputs or ConsoleInput()
    executor = Executor(mode, recorder, registry or default_registry())

    return RunContext(
        config=config,
        mode=mode,
        recorder=recorder,
        inputs=inputs,
        probe=probe or SystemProbe(),
        executor=executor,
        validator=Validator(inputs, recorder),
        credentials=CredentialHandler(inputs, recorder, executor),
        cleanup=CleanupHandler(executor, recorder, scratch_path(run_id)),
        run_type=run_type,
        run_id=run_id,
    )
