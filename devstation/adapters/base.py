"""
Adapter protocol — how the Executor reaches the outside world.

An adapter owns one kind of effect (running programs, touching files,
talking HTTP, waiting on a condition). The registry picks the adapter
named by ``Action.adapter``, asks it to ``validate`` the action, then
calls ``execute``. Both return values; neither raises.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from devstation.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """One action plus the parameters it is dispatched with."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: Action
    cwd: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return self.action.argv


class Adapter(ABC):
    """Performs one kind of effect and reports it as a Receipt."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key; matches ``Action.adapter``."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the action's params before anything happens.

        Returns:
            (is_valid, error_message); the message is empty when valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Perform the effect. Failures go into the Receipt."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name!r}>"
