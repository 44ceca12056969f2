"""
Mock adapter — records every action it is given and succeeds.

Tests register one per adapter name ("shell", "filesystem", "http",
"wait"). Failures are scripted either by action id or, since step
bodies generate their ids, by a fragment of the action description.
"""

from __future__ import annotations

from devstation.adapters.base import Adapter, ExecutionContext
from devstation.core.models.action import FailureKind, Receipt


class MockAdapter(Adapter):
    def __init__(self, adapter_name: str = "mock", default_output: str = "[mock] executed"):
        self._name = adapter_name
        self._default_output = default_output
        self._by_id: dict[str, Receipt] = {}
        self._failing: list[tuple[str, str, FailureKind]] = []
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """Contexts received, in order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        self._by_id[action_id] = receipt

    def set_failure(
        self,
        action_id: str,
        error: str = "Mock failure",
        kind: FailureKind = FailureKind.EFFECT,
    ) -> None:
        self._by_id[action_id] = self._failed(action_id, error, kind)

    def fail_matching(
        self,
        text: str,
        error: str = "Mock failure",
        kind: FailureKind = FailureKind.EFFECT,
    ) -> None:
        """Fail every action whose description contains ``text``."""
        self._failing.append((text, error, kind))

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        action = context.action

        if action.id in self._by_id:
            return self._by_id[action.id]
        for text, error, kind in self._failing:
            if text in action.description:
                return self._failed(action.id, error, kind)

        return Receipt.success(
            adapter=self._name,
            action_id=action.id,
            output=self._default_output,
            return_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        self._call_log.clear()
        self._by_id.clear()
        self._failing.clear()

    def _failed(self, action_id: str, error: str, kind: FailureKind) -> Receipt:
        return Receipt.failure(
            adapter=self._name,
            action_id=action_id,
            error=error,
            kind=kind,
            return_code=1,
        )
