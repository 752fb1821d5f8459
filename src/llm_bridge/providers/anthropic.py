"""Anthropic provider implementation."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field

from llm_bridge.classify import classify_stream_error
from llm_bridge.errors import MissingCredential
from llm_bridge.providers.base import (
    BaseProvider,
    ModelCapabilities,
    RawToolUse,
    mark_cacheable,
    parse_stop_reason,
    trim_last_text,
)
from llm_bridge.settings import AnthropicSettings
from llm_bridge.transport import SseTransport
from llm_bridge.types import (
    CompletionEvent,
    CompletionRequest,
    ImageContent,
    MessageContent,
    RedactedThinkingContent,
    RedactedThinkingEvent,
    Role,
    StartMessageEvent,
    StopEvent,
    StopReason,
    TextContent,
    TextEvent,
    ThinkingContent,
    ThinkingEvent,
    TokenUsage,
    ToolResultContent,
    ToolUseContent,
    UsageUpdateEvent,
)

_DEFAULT_BASE_URL = "https://api.anthropic.com"
_MESSAGES_PATH = "/v1/messages"
_API_VERSION = "2023-06-01"
_DEFAULT_THINKING_BUDGET = 4096

_STOP_REASONS = {
    "end_turn": StopReason.END_TURN,
    "stop_sequence": StopReason.END_TURN,
    "max_tokens": StopReason.MAX_TOKENS,
    "tool_use": StopReason.TOOL_USE,
    "refusal": StopReason.REFUSAL,
}


class AnthropicModelMode(BaseModel):
    """Whether the model runs with extended thinking."""

    type: Literal["default", "thinking"] = "default"
    budget_tokens: int | None = None


class AnthropicModel(BaseModel):
    """Static description of an Anthropic model."""

    id: str
    display_name: str | None = None
    max_tokens: int = 200_000
    max_output_tokens: int = 8_192
    default_temperature: float = 1.0
    mode: AnthropicModelMode = Field(default_factory=AnthropicModelMode)
    extra_beta_headers: list[str] = Field(default_factory=list)


def into_anthropic(
    request: CompletionRequest,
    model: str,
    default_temperature: float,
    max_output_tokens: int,
    mode: AnthropicModelMode | None = None,
) -> dict[str, Any]:
    """Build a Messages API payload from a canonical request."""
    messages: list[dict[str, Any]] = []
    system_parts: list[str] = []

    for message in request.messages:
        if message.contents_empty():
            continue
        if message.role is Role.SYSTEM:
            system_parts.append(message.string_contents())
            continue

        blocks = [block for block in map(_content_block, message.content) if block is not None]
        if not blocks:
            continue
        if message.cache:
            mark_cacheable(blocks, skip_types=("redacted_thinking",))

        role = message.role.value
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})

    if messages:
        trim_last_text(messages[-1]["content"])

    payload: dict[str, Any] = {
        "model": model,
        "max_tokens": max_output_tokens,
        "messages": messages,
    }

    system = "\n\n".join(system_parts)
    if system:
        payload["system"] = system
    if request.thinking_allowed and mode is not None and mode.type == "thinking":
        payload["thinking"] = {
            "type": "enabled",
            "budget_tokens": mode.budget_tokens or _DEFAULT_THINKING_BUDGET,
        }
    if request.tools:
        payload["tools"] = [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in request.tools
        ]
    if request.tool_choice is not None:
        payload["tool_choice"] = {"type": request.tool_choice.value}
    if request.stop:
        payload["stop_sequences"] = list(request.stop)
    payload["temperature"] = (
        request.temperature if request.temperature is not None else default_temperature
    )
    return payload


def _image_block(image: ImageContent) -> dict[str, Any]:
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": image.media_type, "data": image.source},
    }


def _content_block(content: MessageContent) -> dict[str, Any] | None:
    if isinstance(content, TextContent):
        if content.is_empty():
            return None
        return {"type": "text", "text": content.text}
    if isinstance(content, ThinkingContent):
        if not content.text:
            return None
        return {"type": "thinking", "thinking": content.text, "signature": content.signature or ""}
    if isinstance(content, RedactedThinkingContent):
        if not content.data:
            return None
        return {"type": "redacted_thinking", "data": content.data}
    if isinstance(content, ImageContent):
        return _image_block(content)
    if isinstance(content, ToolUseContent):
        return {"type": "tool_use", "id": content.id, "name": content.name, "input": content.input}
    if isinstance(content, ToolResultContent):
        result = content.content
        return {
            "type": "tool_result",
            "tool_use_id": content.tool_use_id,
            "is_error": content.is_error,
            "content": result if isinstance(result, str) else [_image_block(result)],
        }
    return None


class AnthropicEventMapper:
    """Turns Messages API stream events into canonical completion events.

    One mapper serves exactly one request. Tool-call arguments are kept per
    content-block index until the block stops.
    """

    def __init__(self) -> None:
        self.tool_uses_by_index: dict[int, RawToolUse] = {}
        self.usage = TokenUsage()
        self.stop_reason = StopReason.END_TURN

    async def map_stream(
        self, events: AsyncIterator[dict[str, Any]]
    ) -> AsyncIterator[CompletionEvent]:
        async with aclosing(events):
            async for event in events:
                for mapped in self.map_event(event):
                    yield mapped

    def map_event(self, event: dict[str, Any]) -> list[CompletionEvent]:
        kind = event.get("type")

        if kind == "content_block_start":
            return self._block_start(event.get("index", 0), event.get("content_block") or {})

        if kind == "content_block_delta":
            return self._block_delta(event.get("index", 0), event.get("delta") or {})

        if kind == "content_block_stop":
            tool_use = self.tool_uses_by_index.pop(event.get("index", 0), None)
            return [tool_use.final_event()] if tool_use is not None else []

        if kind == "message_start":
            message = event.get("message") or {}
            self._update_usage(message.get("usage"))
            return [
                UsageUpdateEvent(usage=self.usage),
                StartMessageEvent(message_id=message.get("id", "")),
            ]

        if kind == "message_delta":
            self._update_usage(event.get("usage"))
            stop_reason = (event.get("delta") or {}).get("stop_reason")
            if stop_reason:
                self.stop_reason = parse_stop_reason("anthropic", stop_reason, _STOP_REASONS)
            return [UsageUpdateEvent(usage=self.usage)]

        if kind == "message_stop":
            return [StopEvent(reason=self.stop_reason)]

        if kind == "error":
            raise classify_stream_error("anthropic", event.get("error"))

        return []

    def _block_start(self, index: int, block: dict[str, Any]) -> list[CompletionEvent]:
        block_type = block.get("type")
        if block_type == "text":
            return [TextEvent(text=block.get("text", ""))]
        if block_type == "thinking":
            return [ThinkingEvent(text=block.get("thinking", ""))]
        if block_type == "redacted_thinking":
            return [RedactedThinkingEvent(data=block.get("data", ""))]
        if block_type == "tool_use":
            self.tool_uses_by_index[index] = RawToolUse(id=block.get("id", ""), name=block.get("name", ""))
        return []

    def _block_delta(self, index: int, delta: dict[str, Any]) -> list[CompletionEvent]:
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return [TextEvent(text=delta.get("text", ""))]
        if delta_type == "thinking_delta":
            return [ThinkingEvent(text=delta.get("thinking", ""))]
        if delta_type == "signature_delta":
            return [ThinkingEvent(text="", signature=delta.get("signature", ""))]
        if delta_type == "input_json_delta":
            tool_use = self.tool_uses_by_index.get(index)
            if tool_use is None:
                return []
            tool_use.input_json += delta.get("partial_json", "")
            # Repair the partial JSON so the caller can render arguments early.
            event = tool_use.speculative_event()
            return [event] if event is not None else []
        return []

    def _update_usage(self, usage: dict[str, Any] | None) -> None:
        if not usage:
            return
        self.usage = self.usage.merged(
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
            cache_creation_input_tokens=usage.get("cache_creation_input_tokens"),
            cache_read_input_tokens=usage.get("cache_read_input_tokens"),
        )


class AnthropicProvider(BaseProvider):
    """Streams completions from the Anthropic Messages API."""

    name = "anthropic"
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        api_key: str | None,
        model: AnthropicModel,
        base_url: str | None = None,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._transport = SseTransport(
            self.name,
            base_url=base_url or _DEFAULT_BASE_URL,
            timeout_s=timeout_s,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: AnthropicSettings,
        *,
        model: AnthropicModel,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AnthropicProvider:
        api_key = settings.api_key.get_secret_value() if settings.api_key else None
        return cls(
            api_key=api_key,
            model=model,
            base_url=settings.base_url,
            timeout_s=settings.timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()

    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(
            max_tokens=self.model.max_tokens,
            max_output_tokens=self.model.max_output_tokens,
            tools=True,
            max_mode=True,
        )

    def build_request(self, req: CompletionRequest) -> dict[str, Any]:
        payload = into_anthropic(
            req,
            self.model.id,
            self.model.default_temperature,
            self.model.max_output_tokens,
            self.model.mode,
        )
        payload["stream"] = True
        return payload

    def stream(self, req: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        """Return an async iterator of canonical events for ``req``."""

        async def _gen() -> AsyncIterator[CompletionEvent]:
            if not self._api_key:
                raise MissingCredential(self.name)
            payload = self.build_request(req)
            self._logger.debug("Streaming %s with %d messages", self.model.id, len(payload["messages"]))

            mapper = AnthropicEventMapper()
            events = self._transport.send(_MESSAGES_PATH, payload, self._headers())
            async with aclosing(mapper.map_stream(events)) as mapped:
                async for event in mapped:
                    yield event

        return _gen()

    def _headers(self) -> dict[str, str]:
        headers = {
            "x-api-key": self._api_key or "",
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }
        if self.model.extra_beta_headers:
            headers["anthropic-beta"] = ",".join(self.model.extra_beta_headers)
        return headers
