"""Adapters — tool bindings for external effects.

Public re-exports for convenient access.
"""

from devstation.adapters.base import Adapter, ExecutionContext
from devstation.adapters.mock import MockAdapter
from devstation.adapters.registry import AdapterRegistry


def default_registry() -> AdapterRegistry:
    """Registry with every real adapter the stage catalogues use."""
    from devstation.adapters.net.http import HttpAdapter
    from devstation.adapters.shell.command import ShellCommandAdapter
    from devstation.adapters.shell.filesystem import FilesystemAdapter
    from devstation.adapters.shell.wait import WaitAdapter

    registry = AdapterRegistry()
    registry.register(ShellCommandAdapter())
    registry.register(FilesystemAdapter())
    registry.register(HttpAdapter())
    registry.register(WaitAdapter())
    return registry


__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "default_registry",
]
