"""Resource handler protocol and registry for orchestration."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class ResourceHandler(Protocol):
    """Applies one resource kind through an external provider."""

    @property
    def kind(self) -> str:
        """Resource kind identifier (e.g. 'network', 'database')."""
        ...

    async def create(self, config: Dict[str, Any]) -> str:
        """Create the resource, return the provider-assigned identity."""
        ...

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        """Converge an existing resource to ``config``."""
        ...


class HandlerRegistry:
    """In-memory registry for resource handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ResourceHandler] = {}

    def register(self, handler: ResourceHandler) -> None:
        """Register a handler by its kind."""
        self._handlers[str(handler.kind)] = handler

    def get(self, kind: str) -> Optional[ResourceHandler]:
        """Get a handler by resource kind."""
        return self._handlers.get(str(kind))

    def list(self) -> List[str]:
        """List all registered kinds."""
        return list(self._handlers.keys())
