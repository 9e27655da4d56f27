"""Categorisation and reply services: providers, response parsing and keyword rules."""

from .llm import (
    AnthropicProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    build_providers,
)
from .orchestrator import CircuitState, ClassificationOrchestrator
from .replies import ReplySuggester, fallback_suggestion
from .response import CategoryMapper, parse_classification
from .rules import fallback_classification, provisional_tag

__all__ = [
    "AnthropicProvider",
    "CategoryMapper",
    "CircuitState",
    "ClassificationOrchestrator",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "ReplySuggester",
    "build_providers",
    "fallback_suggestion",
    "fallback_classification",
    "parse_classification",
    "provisional_tag",
]
