"""Provider definitions for llm_bridge."""

from .anthropic import AnthropicEventMapper, AnthropicModel, AnthropicModelMode, AnthropicProvider, into_anthropic
from .base import BaseProvider, ModelCapabilities
from .openai import OpenAIEventMapper, OpenAIModel, OpenAIProvider, into_openai

__all__ = [
    "BaseProvider",
    "ModelCapabilities",
    "AnthropicProvider",
    "AnthropicModel",
    "AnthropicModelMode",
    "AnthropicEventMapper",
    "into_anthropic",
    "OpenAIProvider",
    "OpenAIModel",
    "OpenAIEventMapper",
    "into_openai",
]
