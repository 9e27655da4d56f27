"""Route messages through the provider chain with failure isolation."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from reach_inbox.core.config import ClassificationSettings
from reach_inbox.core.errors import ProviderError
from reach_inbox.core.interfaces import ClassifierProvider
from reach_inbox.core.models import Category, ClassificationResult, Message

from .prompts import SYSTEM_PROMPT, build_categorization_prompt
from .response import CategoryMapper, parse_classification
from .rules import fallback_classification

LOGGER = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]
T = TypeVar("T")


class CircuitState(StrEnum):
    """Whether a provider may still be called in this process."""

    AVAILABLE = "available"
    DISABLED = "disabled"


@dataclass(slots=True)
class _ProviderSlot:
    provider: ClassifierProvider
    state: CircuitState = CircuitState.AVAILABLE
    disabled_reason: str | None = None
    failures: int = 0


class ClassificationOrchestrator:
    """Classify messages via an ordered provider list ending in keyword rules.

    Providers that fail with an authentication or quota error are disabled for
    the lifetime of the orchestrator. Every other failure only skips the
    provider for the current message. :meth:`classify` never raises.
    """

    def __init__(
        self,
        providers: Sequence[ClassifierProvider] = (),
        *,
        mapper: CategoryMapper | None = None,
        batch_size: int = 5,
        batch_delay_seconds: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Prepare circuit state for ``providers`` in the given order."""
        self._slots = [_ProviderSlot(provider) for provider in providers]
        self._mapper = mapper or CategoryMapper()
        self._batch_size = max(1, batch_size)
        self._batch_delay = max(0.0, batch_delay_seconds)
        self._sleep = sleep
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: ClassificationSettings,
        providers: Sequence[ClassifierProvider],
        **kwargs: Any,
    ) -> ClassificationOrchestrator:
        """Build an orchestrator using the configured remap and batching."""
        return cls(
            providers,
            mapper=CategoryMapper(settings.remap, default=settings.default_category),
            batch_size=settings.batch_size,
            batch_delay_seconds=settings.batch_delay_seconds,
            **kwargs,
        )

    def classify(self, message: Message) -> ClassificationResult:
        """Return a primary-category result for ``message``."""
        try:
            prompt = build_categorization_prompt(message)
        except Exception:  # noqa: BLE001 - malformed message goes straight to rules
            LOGGER.warning("Could not build prompt for message; using rules", exc_info=True)
            return self._fallback(message)

        answer = self.run_chain(SYSTEM_PROMPT, prompt, parse_classification)
        if answer is None:
            return self._fallback(message)
        parsed, name = answer
        category = self._mapper.map(parsed.label)
        LOGGER.debug(
            "Provider %s labelled message %s as %s (%s)",
            name,
            getattr(message, "id", "?"),
            category,
            parsed.label,
        )
        return ClassificationResult(
            category=category,
            confidence=parsed.confidence,
            reasoning=parsed.reasoning or f"Categorized by {name}",
            provider=name,
            used_fallback=False,
        )

    def run_chain(
        self, system_prompt: str, user_prompt: str, parse: Callable[[str], T]
    ) -> tuple[T, str] | None:
        """Return the first answer ``parse`` accepts, with the provider's name.

        ``parse`` signals an unusable answer with ``ValueError``. ``None``
        means no provider produced one.
        """
        for slot in self._slots:
            # Re-read under the lock: a sibling thread may have disabled it.
            if not self._is_available(slot):
                continue
            name = slot.provider.name
            try:
                return parse(slot.provider.complete(system_prompt, user_prompt)), name
            except ProviderError as exc:
                self._record_failure(slot, exc)
            except ValueError as exc:
                LOGGER.warning("Provider %s returned an unusable answer: %s", name, exc)
            except Exception:  # noqa: BLE001 - one provider must not break the chain
                LOGGER.exception("Provider %s raised unexpectedly", name)
        return None

    @property
    def mapper(self) -> CategoryMapper:
        """Label-to-category mapping shared with reply suggestions."""
        return self._mapper

    async def classify_batch(
        self, messages: Sequence[Message]
    ) -> list[ClassificationResult]:
        """Classify ``messages`` in concurrent groups, preserving order."""
        results: list[ClassificationResult] = []
        for start in range(0, len(messages), self._batch_size):
            if start and self._batch_delay:
                await self._sleep(self._batch_delay)
            group = messages[start : start + self._batch_size]
            outcomes = await asyncio.gather(
                *(asyncio.to_thread(self.classify, message) for message in group),
                return_exceptions=True,
            )
            for message, outcome in zip(group, outcomes):
                if isinstance(outcome, ClassificationResult):
                    results.append(outcome)
                    continue
                if not isinstance(outcome, Exception):
                    raise outcome
                LOGGER.warning(
                    "Classification failed for message %s: %s",
                    getattr(message, "id", "?"),
                    outcome,
                )
                results.append(self._fallback(message))
        return results

    def provider_status(self) -> list[dict[str, Any]]:
        """Return name, model and circuit state for every provider."""
        with self._lock:
            return [
                {
                    "name": slot.provider.name,
                    "model": getattr(slot.provider, "model", ""),
                    "state": slot.state.value,
                    "failures": slot.failures,
                    "reason": slot.disabled_reason,
                }
                for slot in self._slots
            ]

    @property
    def available_providers(self) -> list[str]:
        """Names of providers that are still callable."""
        return [slot.provider.name for slot in self._available_slots()]

    # Internal helpers ---------------------------------------------------------
    def _available_slots(self) -> list[_ProviderSlot]:
        with self._lock:
            return [slot for slot in self._slots if slot.state is CircuitState.AVAILABLE]

    def _is_available(self, slot: _ProviderSlot) -> bool:
        with self._lock:
            return slot.state is CircuitState.AVAILABLE

    def _record_failure(self, slot: _ProviderSlot, exc: ProviderError) -> None:
        name = slot.provider.name
        with self._lock:
            slot.failures += 1
            if exc.kind.is_fatal and slot.state is CircuitState.AVAILABLE:
                slot.state = CircuitState.DISABLED
                slot.disabled_reason = exc.kind.value
                LOGGER.error(
                    "Disabling provider %s after %s failure: %s", name, exc.kind, exc
                )
                return
        LOGGER.warning("Provider %s failed (%s): %s", name, exc.kind, exc)

    @staticmethod
    def _fallback(message: Message) -> ClassificationResult:
        try:
            return fallback_classification(
                getattr(message, "subject", ""), getattr(message, "body_text", "")
            )
        except Exception:  # noqa: BLE001 - totality guarantee
            LOGGER.exception("Rule-based fallback failed; using default category")
            return ClassificationResult(
                category=Category.INTERESTED,
                confidence=0.6,
                reasoning="Rule-based fallback categorization (default)",
                provider="rules",
                used_fallback=True,
            )


__all__ = ["CircuitState", "ClassificationOrchestrator"]
