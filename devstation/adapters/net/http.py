"""
HTTP adapter — downloads and the authenticated SSH key upload.

Network failures are reported with ``FailureKind.NETWORK`` so the
pipeline can degrade them to manual fallback instructions.

The upload reads its token from a Credential reference carried in
``params["credential"]``; the token is consumed exactly once at send
time and never stored on the action or the receipt.
"""

from __future__ import annotations

import json
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Callable

from devstation.adapters.base import Adapter, ExecutionContext
from devstation.core.models.action import FailureKind, Receipt

logger = logging.getLogger(__name__)

USER_AGENT = "devstation/1.0"
DEFAULT_TIMEOUT = 60

_OPERATIONS = {"download", "upload_key"}


class HttpAdapter(Adapter):
    """Network operations with receipts.

    Action params:
        operation (str): 'download' or 'upload_key'.
        url (str): Target URL.
        path (str): Destination file (download) or public key file (upload_key).
        title (str): Key title (upload_key).
        credential: Credential holding the access token (upload_key).
        timeout (int): Socket timeout in seconds.
    """

    def __init__(self, urlopen: Callable[..., Any] = urllib.request.urlopen):
        self._urlopen = urlopen

    @property
    def name(self) -> str:
        return "http"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.params.get("operation", "")
        if operation not in _OPERATIONS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(_OPERATIONS))}"
        if not context.params.get("url"):
            return False, "Missing required param: 'url'"
        if not context.params.get("path"):
            return False, "Missing required param: 'path'"
        if operation == "upload_key" and context.params.get("credential") is None:
            return False, "Missing required param: 'credential' for upload_key"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.params["operation"]
        try:
            if operation == "download":
                return self._download(context)
            return self._upload_key(context)
        except urllib.error.HTTPError as e:
            return self._network_failure(context, f"HTTP {e.code}: {e.reason}", status=e.code)
        except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
            return self._network_failure(context, f"Network error: {e}")
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"I/O error during {operation}: {e}",
            )

    def _download(self, ctx: ExecutionContext) -> Receipt:
        url = ctx.params["url"]
        dest = Path(ctx.params["path"])
        timeout = ctx.params.get("timeout", DEFAULT_TIMEOUT)

        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")

        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with self._urlopen(req, timeout=timeout) as resp, partial.open("wb") as out:
            shutil.copyfileobj(resp, out)
        partial.replace(dest)

        size = dest.stat().st_size
        logger.debug("Downloaded %s → %s (%d bytes)", url, dest, size)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Downloaded {size} bytes to {dest}",
            return_code=0,
            metadata={"path": str(dest), "size": size},
        )

    def _upload_key(self, ctx: ExecutionContext) -> Receipt:
        url = ctx.params["url"]
        key_path = Path(ctx.params["path"])
        title = ctx.params.get("title", "")
        timeout = ctx.params.get("timeout", DEFAULT_TIMEOUT)
        credential = ctx.params["credential"]

        body = json.dumps({
            "title": title,
            "key": key_path.read_text(encoding="utf-8").strip(),
        }).encode("utf-8")

        req = urllib.request.Request(
            url,
            data=body,
            method="POST",
            headers={
                "Accept": "application/vnd.github+json",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                "Authorization": f"token {credential.consume()}",
            },
        )
        with self._urlopen(req, timeout=timeout) as resp:
            status = resp.status

        if status != 201:
            return self._network_failure(ctx, f"Unexpected HTTP {status}", status=status)

        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output="SSH key uploaded",
            return_code=0,
            metadata={"http_status": status},
        )

    def _network_failure(self, ctx: ExecutionContext, error: str, status: int | None = None) -> Receipt:
        return Receipt.failure(
            adapter=self.name,
            action_id=ctx.action.id,
            error=error,
            kind=FailureKind.NETWORK,
            metadata={"http_status": status} if status is not None else {},
        )
