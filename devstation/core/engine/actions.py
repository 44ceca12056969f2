"""
Action builders — small constructors used by the stage catalogues.

They keep action ids unique and descriptions consistent: a command's
description is the command line exactly as a user would type it.
"""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any

from devstation.adapters.shell.command import format_argv
from devstation.core.models.action import Action

_counter = itertools.count(1)


def _next_id(prefix: str) -> str:
    return f"{prefix}-{next(_counter)}"


def command(
    argv: list[str],
    description: str | None = None,
    *,
    key: str | None = None,
    **params: Any,
) -> Action:
    """A program invocation. ``key`` gives the action a stable id."""
    return Action(
        id=key or _next_id("cmd"),
        description=description or format_argv(argv),
        adapter="shell",
        argv=list(argv),
        params=params,
    )


def file_op(
    operation: str,
    path: Path | str,
    description: str,
    *,
    key: str | None = None,
    **params: Any,
) -> Action:
    """A filesystem operation (see FilesystemAdapter)."""
    return Action(
        id=key or _next_id(operation),
        description=description,
        adapter="filesystem",
        params={"operation": operation, "path": str(path), **params},
    )


def download(url: str, dest: Path, description: str, *, key: str | None = None, timeout: int = 60) -> Action:
    return Action(
        id=key or _next_id("download"),
        description=description,
        adapter="http",
        params={"operation": "download", "url": url, "path": str(dest), "timeout": timeout},
    )


def wait_until(
    argv: list[str],
    description: str,
    *,
    timeout: int,
    interval: int = 5,
    remediation: str = "",
    key: str | None = None,
) -> Action:
    """Block until ``argv`` exits 0, at most ``timeout`` seconds."""
    return Action(
        id=key or _next_id("wait"),
        description=description,
        adapter="wait",
        argv=list(argv),
        params={"timeout": timeout, "interval": interval, "remediation": remediation},
    )


def upload_key(
    url: str,
    public_key: Path,
    title: str,
    credential: Any,
    *,
    key: str | None = None,
    timeout: int = 60,
) -> Action:
    """Authenticated public-key upload. Holds the Credential, not its value."""
    return Action(
        id=key or _next_id("upload"),
        description=f"upload SSH key '{title}' to {url}",
        adapter="http",
        params={
            "operation": "upload_key",
            "url": url,
            "path": str(public_key),
            "title": title,
            "credential": credential,
            "timeout": timeout,
        },
    )
