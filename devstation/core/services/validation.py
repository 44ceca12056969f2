"""
Input validation — format contracts for interactive answers.

A ValidationRule is a named, immutable predicate (pattern plus length
bounds). ``validate`` is the pure check; ``Validator.prompt`` wraps it
in a bounded retry loop over an InputSource.

Exhausting the retry budget is fatal: continuing without a valid
identity would commit code under no name, so ValidationExhausted is
raised and the pipeline aborts through cleanup.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from devstation.core.observability.recorder import Recorder
from devstation.core.services.prompts import InputSource

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class ValidationRule:
    """Named format contract for one kind of input."""

    name: str
    pattern: re.Pattern[str] | None = None
    min_length: int = 1
    max_length: int | None = None
    message: str = ""


EMAIL_RULE = ValidationRule(
    name="email",
    pattern=re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$"),
    max_length=254,
    message="expected an address like name@example.com",
)

NAME_RULE = ValidationRule(
    name="name",
    pattern=re.compile(r"^(?:[^\W_]|[ .'\-])+$"),
    max_length=100,
    message="only letters, digits, spaces, dots, hyphens and apostrophes are allowed",
)

NON_EMPTY_RULE = ValidationRule(
    name="value",
    message="a value is required",
)

TOKEN_RULE = ValidationRule(
    name="token",
    pattern=re.compile(r"^[A-Za-z0-9_]+$"),
    min_length=20,
    max_length=100,
    message="expected 20-100 letters, digits or underscores",
)


class ValidationExhausted(Exception):
    """Raised when every attempt at a validated prompt was rejected."""

    def __init__(self, rule: ValidationRule, attempts: int):
        self.rule = rule
        self.attempts = attempts
        super().__init__(f"No valid {rule.name} after {attempts} attempts")


def validate(value: str, rule: ValidationRule) -> str | None:
    """Check a value against a rule.

    Returns:
        Error message string, or ``None`` if valid.
    """
    if len(value) < rule.min_length:
        if rule.min_length <= 1:
            return "must not be empty"
        return f"must be at least {rule.min_length} characters"
    if rule.max_length is not None and len(value) > rule.max_length:
        return f"must be at most {rule.max_length} characters"
    if rule.pattern is not None and not rule.pattern.match(value):
        return rule.message or f"must match {rule.pattern.pattern}"
    return None


class Validator:
    """Validated interactive prompts with a fixed retry budget."""

    def __init__(self, inputs: InputSource, recorder: Recorder):
        self._inputs = inputs
        self._recorder = recorder

    def prompt(self, message: str, rule: ValidationRule) -> str:
        """Ask until the answer satisfies ``rule``, at most MAX_ATTEMPTS times.

        Raises:
            ValidationExhausted: After MAX_ATTEMPTS invalid answers.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            value = self._inputs.ask(message).strip()
            error = validate(value, rule)
            if error is None:
                return value
            self._recorder.warn(
                f"Invalid {rule.name}: {error} (attempt {attempt}/{MAX_ATTEMPTS})"
            )

        self._recorder.error(
            f"Giving up: no valid {rule.name} after {MAX_ATTEMPTS} attempts"
        )
        raise ValidationExhausted(rule, MAX_ATTEMPTS)

    def confirm(self, message: str, default: bool = False) -> bool:
        return self._inputs.confirm(message, default=default)
