"""
Shell command adapter — run a program with an argument list.

This is the most fundamental adapter: it runs commands and captures
their output. Commands are never passed through a shell; the program
and its arguments arrive pre-split in ``action.argv``.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from pathlib import Path

from devstation.adapters.base import Adapter, ExecutionContext
from devstation.core.models.action import FailureKind, Receipt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800
_TAIL = 2000


def format_argv(argv: list[str]) -> str:
    """Render an argv list the way a user would type it."""
    return " ".join(shlex.quote(a) for a in argv)


class ShellCommandAdapter(Adapter):
    """Execute commands and capture output.

    Action params:
        env (dict): Extra environment variables.
        cwd (str): Working directory (default: inherited).
        timeout (int): Timeout in seconds (default: 1800).
        interactive (bool): Inherit the terminal instead of capturing
            output (installers that prompt for a password).
    """

    @property
    def name(self) -> str:
        return "shell"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.argv:
            return False, "Missing required field: 'argv'"

        cwd = context.params.get("cwd", context.cwd)
        if cwd and not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        argv = list(context.argv)
        timeout = context.params.get("timeout", DEFAULT_TIMEOUT)
        cwd = context.params.get("cwd", context.cwd)
        interactive = context.params.get("interactive", False)
        command = format_argv(argv)

        env = os.environ.copy()
        for key, value in (context.params.get("env") or {}).items():
            env[key] = str(value)

        logger.debug("Executing: %s (cwd=%s)", command, cwd)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                cwd=cwd,
                env=env,
                capture_output=not interactive,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Program not found: {argv[0]}",
                kind=FailureKind.PRECONDITION,
                metadata={"command": command},
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command timed out after {timeout}s",
                kind=FailureKind.TIMEOUT,
                metadata={"command": command, "timeout": timeout},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = (result.stdout or "").strip()[-_TAIL:]
        stderr = (result.stderr or "").strip()[-_TAIL:]

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=output,
                return_code=0,
                duration_ms=elapsed_ms,
                metadata={"command": command, "stderr": stderr},
            )

        # 127: the shell could not find a program it was asked to run
        kind = FailureKind.PRECONDITION if result.returncode == 127 else FailureKind.EFFECT
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=stderr or f"Command exited with code {result.returncode}",
            kind=kind,
            return_code=result.returncode,
            duration_ms=elapsed_ms,
            metadata={"command": command, "stdout": output},
        )
