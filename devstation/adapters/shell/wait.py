"""
Wait adapter — block until an external process reaches a completion
condition, bounded by a fixed timeout.

Used for installers that hand off to a GUI dialog (Xcode Command Line
Tools) and finish asynchronously. The condition is a probe command
that exits 0 once the goal state holds.
"""

from __future__ import annotations

import logging
import subprocess
import time
from typing import Callable

from devstation.adapters.base import Adapter, ExecutionContext
from devstation.core.models.action import FailureKind, Receipt

logger = logging.getLogger(__name__)

_PROBE_TIMEOUT = 30


class WaitAdapter(Adapter):
    """Poll ``action.argv`` until it exits 0 or the timeout elapses.

    Action params:
        timeout (int): Overall bound in seconds.
        interval (int): Seconds between polls.
        remediation (str): Appended to the timeout error.
    """

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sleep = sleep
        self._clock = clock

    @property
    def name(self) -> str:
        return "wait"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.argv:
            return False, "Missing required field: 'argv' (probe command)"
        if int(context.params.get("timeout", 0)) <= 0:
            return False, "Param 'timeout' must be a positive number of seconds"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        timeout = int(context.params["timeout"])
        interval = max(1, int(context.params.get("interval", 5)))
        deadline = self._clock() + timeout
        polls = 0

        while True:
            polls += 1
            if self._probe(context.argv):
                return Receipt.success(
                    adapter=self.name,
                    action_id=context.action.id,
                    output=f"Condition met after {polls} poll(s)",
                    return_code=0,
                    metadata={"polls": polls},
                )
            if self._clock() >= deadline:
                break
            self._sleep(interval)

        remediation = context.params.get("remediation", "")
        error = f"Timed out after {timeout}s waiting for: {' '.join(context.argv)}"
        if remediation:
            error = f"{error}. {remediation}"
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=error,
            kind=FailureKind.TIMEOUT,
            metadata={"polls": polls, "timeout": timeout},
        )

    def _probe(self, argv: list[str]) -> bool:
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=_PROBE_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("Wait probe %s errored: %s", argv, e)
            return False
        return result.returncode == 0
