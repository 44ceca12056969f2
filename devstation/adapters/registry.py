"""
Adapter registry — maps ``Action.adapter`` names to adapters.

The Executor dispatches LIVE actions here and nowhere else. Whatever
goes wrong on the way (no such adapter, bad params, an adapter that
raises anyway) comes back as a failed Receipt.
"""

from __future__ import annotations

import logging
import time

from devstation.adapters.base import Adapter, ExecutionContext
from devstation.core.models.action import Action, FailureKind, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Name → adapter table with receipt-returning dispatch."""

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}

    @property
    def names(self) -> list[str]:
        return sorted(self._adapters)

    def register(self, adapter: Adapter) -> None:
        """Add ``adapter``; a later registration under the same name wins."""
        if adapter.name in self._adapters:
            logger.debug("Replacing adapter %s with %r", adapter.name, adapter)
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def execute_action(self, action: Action, cwd: str | None = None) -> Receipt:
        """Validate and execute ``action``; the receipt carries the duration."""
        started = time.monotonic()
        receipt = self._dispatch(action, cwd)
        receipt.duration_ms = int((time.monotonic() - started) * 1000)
        return receipt

    def _dispatch(self, action: Action, cwd: str | None) -> Receipt:
        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return _rejected(action, f"No adapter registered for '{action.adapter}'")

        context = ExecutionContext(action=action, cwd=cwd, params=action.params)
        try:
            valid, reason = adapter.validate(context)
        except Exception as e:
            return _rejected(action, f"Validation error: {e}")
        if not valid:
            return _rejected(action, f"Validation failed: {reason}")

        try:
            return adapter.execute(context)
        except Exception as e:
            # adapters must not raise
            logger.error("Adapter %s raised on %s: %s", action.adapter, action.id, e)
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )


def _rejected(action: Action, error: str) -> Receipt:
    return Receipt.failure(
        adapter=action.adapter,
        action_id=action.id,
        error=error,
        kind=FailureKind.VALIDATION,
    )
