"""
Filesystem adapter — file and directory operations.

Provides a receipt-returning interface for the filesystem effects the
pipeline needs (config files, SSH material, dotfile links, removals),
so they pass through the executor and are dry-run like every other
action.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from devstation.adapters.base import Adapter, ExecutionContext
from devstation.core.models.action import Receipt

logger = logging.getLogger(__name__)

_OPERATIONS = {
    "read", "write", "append", "append_missing", "mkdir",
    "symlink", "remove", "remove_lines", "remove_block",
}
_NEEDS_CONTENT = {"write", "append", "append_missing"}


class FilesystemAdapter(Adapter):
    """File and directory operations with receipts.

    Action params:
        operation (str): One of the supported operations.
        path (str): Absolute target path.
        content (str): Text for write / append / append_missing.
        marker (str): append_missing skips the append if the file contains it.
        target (str): Link target for symlink.
        needle (str): remove_lines drops every line containing it.
        start, end (str): remove_block drops the first line containing
            ``start`` through the next line containing ``end``.
        mode (int): Permission bits for mkdir / write.
    """

    @property
    def name(self) -> str:
        return "filesystem"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.params.get("operation", "")
        if not operation:
            return False, "Missing required param: 'operation'"
        if operation not in _OPERATIONS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(_OPERATIONS))}"

        path = context.params.get("path", "")
        if not path:
            return False, "Missing required param: 'path'"
        if not Path(path).is_absolute():
            return False, f"Path must be absolute: {path}"

        if operation in _NEEDS_CONTENT and "content" not in context.params:
            return False, f"Missing required param: 'content' for {operation} operation"
        if operation == "symlink" and not context.params.get("target"):
            return False, "Missing required param: 'target' for symlink operation"
        if operation == "remove_lines" and not context.params.get("needle"):
            return False, "Missing required param: 'needle' for remove_lines operation"
        if operation == "remove_block" and not (context.params.get("start") and context.params.get("end")):
            return False, "Missing required params: 'start' and 'end' for remove_block operation"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.params["operation"]
        target = Path(context.params["path"])
        handler = getattr(self, f"_{operation}")

        try:
            return handler(context, target)
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Filesystem error: {e}",
                metadata={"operation": operation, "path": str(target)},
            )

    def _ok(self, ctx: ExecutionContext, output: str, **metadata: object) -> Receipt:
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=output,
            return_code=0,
            metadata=metadata,
        )

    def _read(self, ctx: ExecutionContext, target: Path) -> Receipt:
        if not target.is_file():
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"File not found: {target}",
            )
        content = target.read_text(encoding="utf-8")
        return self._ok(ctx, content, path=str(target), size=len(content))

    def _write(self, ctx: ExecutionContext, target: Path) -> Receipt:
        content = ctx.params["content"]
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        if "mode" in ctx.params:
            target.chmod(ctx.params["mode"])
        return self._ok(ctx, f"Written {len(content)} bytes to {target}", path=str(target))

    def _append(self, ctx: ExecutionContext, target: Path) -> Receipt:
        content = ctx.params["content"]
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as f:
            f.write(content)
        return self._ok(ctx, f"Appended {len(content)} bytes to {target}", path=str(target))

    def _append_missing(self, ctx: ExecutionContext, target: Path) -> Receipt:
        marker = ctx.params.get("marker") or ctx.params["content"]
        if target.is_file() and marker in target.read_text(encoding="utf-8"):
            return self._ok(ctx, f"{target} already configured", path=str(target), changed=False)
        return self._append(ctx, target)

    def _mkdir(self, ctx: ExecutionContext, target: Path) -> Receipt:
        target.mkdir(parents=True, exist_ok=True)
        if "mode" in ctx.params:
            target.chmod(ctx.params["mode"])
        return self._ok(ctx, f"Directory ready: {target}", path=str(target))

    def _symlink(self, ctx: ExecutionContext, target: Path) -> Receipt:
        link_target = ctx.params["target"]
        # ln -sf semantics: replace whatever is there
        if target.is_symlink() or target.is_file():
            target.unlink()
        target.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(link_target, target)
        return self._ok(ctx, f"Linked {target} → {link_target}", path=str(target))

    def _remove(self, ctx: ExecutionContext, target: Path) -> Receipt:
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)
        else:
            return self._ok(ctx, f"{target} already absent", path=str(target), absent=True)
        return self._ok(ctx, f"Removed {target}", path=str(target), absent=False)

    def _remove_lines(self, ctx: ExecutionContext, target: Path) -> Receipt:
        needle = ctx.params["needle"]
        if not target.is_file():
            return self._ok(ctx, f"{target} already absent", path=str(target), removed=0)
        lines = target.read_text(encoding="utf-8").splitlines(keepends=True)
        kept = [line for line in lines if needle not in line]
        target.write_text("".join(kept), encoding="utf-8")
        removed = len(lines) - len(kept)
        return self._ok(ctx, f"Removed {removed} line(s) from {target}", path=str(target), removed=removed)

    def _remove_block(self, ctx: ExecutionContext, target: Path) -> Receipt:
        start, end = ctx.params["start"], ctx.params["end"]
        if not target.is_file():
            return self._ok(ctx, f"{target} already absent", path=str(target), removed=0)
        lines = target.read_text(encoding="utf-8").splitlines(keepends=True)
        first = next((i for i, line in enumerate(lines) if start in line), None)
        if first is None:
            return self._ok(ctx, f"No block in {target}", path=str(target), removed=0)
        last = next((i for i in range(first, len(lines)) if end in lines[i]), None)
        if last is None:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"Block in {target} starts at line {first + 1} but never ends",
            )
        # the blank line written ahead of the block goes with it
        if first > 0 and not lines[first - 1].strip():
            first -= 1
        kept = lines[:first] + lines[last + 1:]
        target.write_text("".join(kept), encoding="utf-8")
        removed = last + 1 - first
        return self._ok(ctx, f"Removed {removed} line(s) from {target}", path=str(target), removed=removed)
