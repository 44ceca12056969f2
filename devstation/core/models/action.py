"""
Action and Receipt models — what a step asks for, and what happened.

A step body yields Actions; the Executor hands each one to an adapter
and gets a Receipt back. Adapters report failure in the Receipt and
never by raising, so the pipeline decides what a failure means.

Commands are argv lists, never shell strings: nothing a user types
(a name, an email, a key title) is ever interpolated into a shell.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class FailureKind(str, Enum):
    """Why a receipt failed — drives how the pipeline reacts."""

    EFFECT = "effect"                # the operation itself returned non-zero
    NETWORK = "network"              # download / upload failed
    TIMEOUT = "timeout"              # bounded wait exceeded
    PRECONDITION = "precondition"    # required external tool is absent
    VALIDATION = "validation"        # action rejected before execution


class Action(BaseModel):
    """A single effectful unit of work.

    Owned by the step that declares it; has no independent lifecycle.
    ``params`` may hold non-serializable references (e.g. a Credential),
    never raw secret values.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    description: str                          # logged verbatim, "would execute: ..."
    adapter: str = "shell"
    argv: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def program(self) -> str:
        return self.argv[0] if self.argv else ""


class Receipt(BaseModel):
    """Outcome of one action."""

    adapter: str
    action_id: str
    status: Literal["ok", "failed"] = "ok"
    kind: FailureKind | None = None           # set on failure only

    output: str = ""
    error: str | None = None
    return_code: int | None = None
    duration_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        kind: FailureKind = FailureKind.EFFECT,
        **kwargs: Any,
    ) -> Receipt:
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            kind=kind,
            error=error,
            **kwargs,
        )
