"""
Credential handling — short-lived secrets used exactly once.

The flow for an access token:

    read (no echo) → validate format → one Action → wipe

The secret lives in a mutable ``bytearray`` owned by a Credential.
Actions carry a reference to the Credential, never its value; the
adapter consumes it at send time. Whatever happens (blank input, bad
format, network failure, exception) the buffer is zeroed and cleared
before ``acquire_and_consume`` returns, so later steps cannot read it.

Failures here are never fatal: the user is shown the manual fallback
and the pipeline carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from devstation.core.engine.executor import Executor
from devstation.core.models.action import Action, Receipt
from devstation.core.observability.recorder import Recorder
from devstation.core.services.prompts import InputSource
from devstation.core.services.validation import TOKEN_RULE, ValidationRule, validate

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """A credential was used after consumption or erasure."""


class Credential:
    """An in-memory, single-use secret."""

    __slots__ = ("purpose", "_buffer", "_consumed")

    def __init__(self, secret: str, purpose: str):
        self.purpose = purpose
        self._buffer = bytearray(secret.encode("utf-8"))
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def wiped(self) -> bool:
        return len(self._buffer) == 0

    @property
    def empty(self) -> bool:
        return all(b in b" \t\r\n" for b in self._buffer)

    def check(self, rule: ValidationRule = TOKEN_RULE) -> str | None:
        """Validate the secret's format without handing it out."""
        return validate(self._buffer.decode("utf-8").strip(), rule)

    def consume(self) -> str:
        """Return the secret. Allowed once, and only before wipe()."""
        if self.wiped:
            raise CredentialError(f"{self.purpose} has been erased")
        if self._consumed:
            raise CredentialError(f"{self.purpose} was already used")
        self._consumed = True
        return self._buffer.decode("utf-8").strip()

    def wipe(self) -> None:
        """Overwrite the secret bytes and release the buffer."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._buffer.clear()

    def __repr__(self) -> str:
        state = "wiped" if self.wiped else "consumed" if self._consumed else "fresh"
        return f"<Credential purpose={self.purpose!r} {state}>"

    __str__ = __repr__


@dataclass
class CredentialOutcome:
    """What happened to one acquire-and-consume attempt."""

    ok: bool
    reason: str
    receipt: Receipt | None = None


class CredentialHandler:
    """Acquires a secret, spends it on one action, and erases it."""

    def __init__(self, inputs: InputSource, recorder: Recorder, executor: Executor):
        self._inputs = inputs
        self._recorder = recorder
        self._executor = executor

    def acquire_and_consume(
        self,
        purpose: str,
        make_action: Callable[[Credential], Action],
        fallback: str = "",
        rule: ValidationRule = TOKEN_RULE,
    ) -> CredentialOutcome:
        """Read a secret for ``purpose`` and pass it to exactly one action.

        Args:
            purpose: Human name of the secret ("GitHub access token").
            make_action: Builds the single action that uses the credential.
            fallback: Manual instructions shown when anything goes wrong.
            rule: Format contract for the secret.
        """
        credential: Credential | None = None
        try:
            credential = Credential(self._inputs.secret(f"Enter your {purpose}"), purpose)

            if credential.empty:
                return self._degrade(f"No {purpose} provided", fallback, "missing")

            error = credential.check(rule)
            if error is not None:
                return self._degrade(f"Invalid {purpose}: {error}", fallback, "invalid")

            receipt = self._executor.run(make_action(credential))
            if receipt.failed:
                return self._degrade(
                    f"Could not use {purpose}: {receipt.error}", fallback, "failed", receipt
                )

            return CredentialOutcome(ok=True, reason="used", receipt=receipt)
        finally:
            if credential is not None:
                credential.wipe()
                logger.debug("Credential for %s wiped", purpose)

    def _degrade(
        self,
        message: str,
        fallback: str,
        reason: str,
        receipt: Receipt | None = None,
    ) -> CredentialOutcome:
        self._recorder.warn(message)
        if fallback:
            self._recorder.info(fallback)
        return CredentialOutcome(ok=False, reason=reason, receipt=receipt)
