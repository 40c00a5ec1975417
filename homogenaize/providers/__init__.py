"""Backend providers."""

from typing import Dict, Type

from ..types import ProviderName
from .anthropic import AnthropicProvider
from .base import STRUCTURED_OUTPUT_TOOL, BaseProvider, OutputMode, PreparedRequest
from .gemini import GeminiProvider
from .openai import OpenAIProvider

PROVIDERS: Dict[ProviderName, Type[BaseProvider]] = {
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.ANTHROPIC: AnthropicProvider,
    ProviderName.GEMINI: GeminiProvider,
}


def get_provider_class(name: str) -> Type[BaseProvider]:
    """Provider class for a backend name."""
    return PROVIDERS[ProviderName(name)]


__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "OutputMode",
    "PreparedRequest",
    "PROVIDERS",
    "STRUCTURED_OUTPUT_TOOL",
    "get_provider_class",
]
