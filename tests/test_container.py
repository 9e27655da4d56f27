"""Tests for the service container."""

from __future__ import annotations

import pytest

from reach_inbox.core import ServiceContainer


def test_factory_runs_once() -> None:
    calls: list[int] = []
    container = ServiceContainer()
    container.register("cache", lambda _: calls.append(1) or object())

    first = container.resolve("cache")

    assert container.resolve("cache") is first
    assert calls == [1]


def test_factories_can_depend_on_each_other() -> None:
    container = ServiceContainer()
    container.register_instance("limit", 7)
    container.register("doubled", lambda c: c.resolve("limit") * 2)

    assert container.resolve("doubled") == 14
    assert "doubled" in container
    assert "missing" not in container


def test_unknown_service_raises_key_error() -> None:
    with pytest.raises(KeyError, match="orchestrator"):
        ServiceContainer().resolve("orchestrator")


def test_duplicate_registration_is_rejected() -> None:
    container = ServiceContainer()
    container.register("cache", lambda _: object())

    with pytest.raises(ValueError, match="already registered"):
        container.register_instance("cache", object())


def test_circular_wiring_is_reported() -> None:
    container = ServiceContainer()
    container.register("a", lambda c: c.resolve("b"))
    container.register("b", lambda c: c.resolve("a"))

    with pytest.raises(RuntimeError, match="a -> b -> a"):
        container.resolve("a")

    # A failed build leaves nothing half-registered.
    container.register_instance("c", 1)
    assert container.resolve("c") == 1
