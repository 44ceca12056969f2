"""
Input sources — where interactive answers come from.

All blocking reads in the system go through an InputSource:

    - ConsoleInput   the terminal, via click prompts (secrets never echo)
    - ScriptedInput  a fixed list of answers, for tests and automation

The Validator, the Credential Handler and the teardown confirmation
gate only ever see this interface.
"""

from __future__ import annotations

from typing import Iterable, Protocol

import click


class InputExhausted(RuntimeError):
    """A scripted input source was asked for more answers than it holds."""


class InputSource(Protocol):
    def ask(self, message: str) -> str:
        """Read one line of visible input."""

    def secret(self, message: str) -> str:
        """Read one line without echoing it."""

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question."""


class ConsoleInput:
    """Interactive terminal input."""

    def ask(self, message: str) -> str:
        return click.prompt(message, default="", show_default=False)

    def secret(self, message: str) -> str:
        return click.prompt(message, default="", show_default=False, hide_input=True)

    def confirm(self, message: str, default: bool = False) -> bool:
        return click.confirm(message, default=default)


class ScriptedInput:
    """Answers taken in order from a list.

    Confirmations accept y/yes/n/no (case-insensitive); an empty answer
    takes the default. Running out of answers raises InputExhausted, so
    a test can assert that no blocking read happened at all.
    """

    def __init__(self, answers: Iterable[str] = ()):
        self._answers = list(answers)
        self._prompts: list[str] = []

    @property
    def prompts(self) -> list[str]:
        """Every message that was asked, in order."""
        return list(self._prompts)

    @property
    def reads(self) -> int:
        return len(self._prompts)

    @property
    def remaining(self) -> int:
        return len(self._answers)

    def ask(self, message: str) -> str:
        return self._next(message)

    def secret(self, message: str) -> str:
        return self._next(message)

    def confirm(self, message: str, default: bool = False) -> bool:
        answer = self._next(message).strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")

    def _next(self, message: str) -> str:
        self._prompts.append(message)
        if not self._answers:
            raise InputExhausted(f"No scripted answer for prompt: {message!r}")
        return self._answers.pop(0)
