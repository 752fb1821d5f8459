"""Async client orchestrating provider interactions."""

from __future__ import annotations

from typing import Any, AsyncIterator, Literal

from llm_bridge.errors import UnsupportedProviderError
from llm_bridge.providers.anthropic import AnthropicProvider
from llm_bridge.providers.base import BaseProvider, ModelCapabilities
from llm_bridge.providers.openai import OpenAIProvider
from llm_bridge.types import CompletionEvent, CompletionRequest

ProviderName = Literal["anthropic", "openai"]


class LLMClient:
    """High-level coordinator for streaming from configured providers."""

    def __init__(
        self,
        *,
        anthropic: AnthropicProvider | None = None,
        openai: OpenAIProvider | None = None,
    ) -> None:
        self._providers: dict[str, BaseProvider] = {}
        for provider in (anthropic, openai):
            if provider is not None:
                self._providers[provider.name] = provider

    def get_provider(self, name: str) -> BaseProvider:
        """Return a provider by its registered name."""
        try:
            return self._providers[name]
        except KeyError as exc:
            raise UnsupportedProviderError(name) from exc

    def capabilities(self, provider: ProviderName) -> ModelCapabilities:
        """Return model capability info for a provider."""
        return self.get_provider(provider).capabilities()

    def build_request(self, provider: ProviderName, req: CompletionRequest) -> dict[str, Any]:
        """Return the wire payload ``provider`` would be sent for ``req``."""
        return self.get_provider(provider).build_request(req)

    def stream(self, provider: ProviderName, req: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        """Stream canonical events for a request."""
        return self.get_provider(provider).stream(req)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
