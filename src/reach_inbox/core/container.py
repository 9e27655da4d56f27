"""Lazy wiring of the long-lived services shared by the CLI and probe server."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

Factory = Callable[["ServiceContainer"], Any]


class ServiceContainer:
    """Builds each named service on first use and hands out the same object after.

    The supervisor, cache and orchestrator must be shared, so every consumer
    resolves them here instead of constructing its own copy.
    """

    def __init__(self) -> None:
        self._factories: dict[str, Factory] = {}
        self._built: dict[str, Any] = {}
        self._building: list[str] = []

    def register(self, name: str, factory: Factory) -> None:
        """Attach a factory; the service is built on the first :meth:`resolve`."""
        self._ensure_unclaimed(name)
        self._factories[name] = factory

    def register_instance(self, name: str, service: Any) -> None:
        """Attach an object that already exists, such as loaded settings."""
        self._ensure_unclaimed(name)
        self._built[name] = service

    def resolve(self, name: str) -> Any:
        """Return the shared service for ``name``, building it if needed."""
        if name in self._built:
            return self._built[name]
        factory = self._factories.get(name)
        if factory is None:
            raise KeyError(f"No service registered as '{name}'")
        if name in self._building:
            chain = " -> ".join([*self._building, name])
            raise RuntimeError(f"Circular service wiring: {chain}")
        self._building.append(name)
        try:
            service = factory(self)
        finally:
            self._building.pop()
        self._built[name] = service
        return service

    def __contains__(self, name: object) -> bool:
        return name in self._factories or name in self._built

    def _ensure_unclaimed(self, name: str) -> None:
        if name in self:
            raise ValueError(f"Service '{name}' is already registered")


__all__ = ["Factory", "ServiceContainer"]
