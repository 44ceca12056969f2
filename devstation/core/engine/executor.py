"""
Engine executor — the single choke-point for every effect.

Every Action the pipeline, the credential handler or the cleanup
handler wants performed passes through ``Executor.run``. This is the
only place in the codebase that looks at the execution mode:

    SIMULATED → record "would execute: <description>", return success,
                touch nothing
    LIVE      → dispatch through the adapter registry, record the
                outcome, return the receipt (failures included)

New steps therefore get correct dry-run behavior for free.
"""

from __future__ import annotations

import logging

from devstation.adapters.registry import AdapterRegistry
from devstation.core.models.action import Action, Receipt
from devstation.core.models.step import ExecutionMode
from devstation.core.observability.recorder import Recorder

logger = logging.getLogger(__name__)


class Executor:
    """Runs actions according to the process-wide execution mode."""

    def __init__(
        self,
        mode: ExecutionMode,
        recorder: Recorder,
        registry: AdapterRegistry,
    ):
        self._mode = mode
        self._recorder = recorder
        self._registry = registry
        self._history: list[Action] = []

    @property
    def mode(self) -> ExecutionMode:
        return self._mode

    @property
    def history(self) -> list[Action]:
        """Every action submitted, in order."""
        return list(self._history)

    @property
    def calls(self) -> int:
        return len(self._history)

    def run(self, action: Action) -> Receipt:
        """Perform (or simulate) one action and return its receipt."""
        self._history.append(action)

        if self._mode is ExecutionMode.SIMULATED:
            self._recorder.info(f"would execute: {action.description}")
            return Receipt.success(
                adapter=action.adapter,
                action_id=action.id,
                metadata={"simulated": True},
            )

        logger.debug("Dispatching %s via %s", action.id, action.adapter)
        receipt = self._registry.execute_action(action)

        if receipt.ok:
            code = receipt.return_code if receipt.return_code is not None else 0
            self._recorder.info(f"{action.description} (exit {code})")
            if action.params.get("echo_output") and receipt.output:
                self._recorder.info(receipt.output)
        else:
            code = receipt.return_code if receipt.return_code is not None else "n/a"
            self._recorder.warn(
                f"{action.description} failed (exit {code}): {receipt.error}"
            )

        return receipt
