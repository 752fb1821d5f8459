"""OpenAI provider implementation."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx
from pydantic import BaseModel

from llm_bridge.classify import classify_stream_error
from llm_bridge.errors import MissingCredential
from llm_bridge.providers.base import (
    BaseProvider,
    ModelCapabilities,
    RawToolUse,
    mark_cacheable,
    parse_stop_reason,
)
from llm_bridge.settings import OpenAISettings
from llm_bridge.transport import SseTransport
from llm_bridge.types import (
    CompletionEvent,
    CompletionRequest,
    ImageContent,
    RedactedThinkingContent,
    Role,
    StartMessageEvent,
    StopEvent,
    StopReason,
    TextContent,
    TextEvent,
    ThinkingContent,
    ThinkingEvent,
    TokenUsage,
    ToolChoice,
    ToolResultContent,
    ToolUseContent,
    UsageUpdateEvent,
)

_DEFAULT_BASE_URL = "https://api.openai.com/v1"
_CHAT_PATH = "/chat/completions"

_TOOL_CHOICES = {
    ToolChoice.AUTO: "auto",
    ToolChoice.ANY: "required",
    ToolChoice.NONE: "none",
}

_STOP_REASONS = {
    "stop": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "content_filter": StopReason.REFUSAL,
}


class OpenAIModel(BaseModel):
    """Static description of an OpenAI (or OpenAI-compatible) model."""

    id: str
    display_name: str | None = None
    max_tokens: int = 128_000
    max_output_tokens: int | None = None
    supports_parallel_tool_calls: bool = True
    # Only gateways that understand "cache_control" on content parts
    cache_hints: bool = False


def into_openai(
    request: CompletionRequest,
    model: str,
    max_output_tokens: int | None = None,
    supports_parallel_tool_calls: bool = False,
    cache_hints: bool = False,
) -> dict[str, Any]:
    """Build a Chat Completions payload from a canonical request."""
    messages: list[dict[str, Any]] = []
    system_parts: list[str] = []
    # Last text part of the final run of same-role messages; tool output is never trimmed.
    final_text: dict[str, Any] | None = None
    last_role: str | None = None

    for message in request.messages:
        if message.contents_empty():
            continue
        if message.role is Role.SYSTEM:
            system_parts.append(message.string_contents())
            continue

        role = message.role.value
        if role != last_role:
            final_text = None
            last_role = role
        emitted: list[dict[str, Any]] = []
        for content in message.content:
            if isinstance(content, (TextContent, ThinkingContent)):
                if content.is_empty():
                    continue
                part = {"type": "text", "text": content.text}
                _add_part(messages, role, part)
                emitted.append(part)
                if isinstance(content, TextContent):
                    final_text = part
            elif isinstance(content, ImageContent):
                part = {"type": "image_url", "image_url": {"url": content.to_base64_url()}}
                _add_part(messages, role, part)
                emitted.append(part)
            elif isinstance(content, ToolUseContent):
                _add_tool_call(messages, content)
            elif isinstance(content, ToolResultContent):
                part = _tool_result_part(content)
                messages.append(
                    {"role": "tool", "tool_call_id": content.tool_use_id, "content": [part]}
                )
                emitted.append(part)
            elif isinstance(content, RedactedThinkingContent):
                continue

        if message.cache and cache_hints:
            mark_cacheable(emitted, skip_types=())

    if final_text is not None:
        final_text["text"] = final_text["text"].rstrip()

    system = "\n\n".join(system_parts)
    if system:
        messages.insert(0, {"role": "system", "content": system})

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "stream": True,
        "stream_options": {"include_usage": True},
        "temperature": request.temperature if request.temperature is not None else 1.0,
    }
    if request.stop:
        payload["stop"] = list(request.stop)
    if max_output_tokens is not None:
        payload["max_completion_tokens"] = max_output_tokens
    if request.tools:
        payload["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in request.tools
        ]
        if supports_parallel_tool_calls:
            # Callers expect at most one tool call per turn.
            payload["parallel_tool_calls"] = False
    if request.tool_choice is not None:
        payload["tool_choice"] = _TOOL_CHOICES[request.tool_choice]
    return payload


def _add_part(messages: list[dict[str, Any]], role: str, part: dict[str, Any]) -> None:
    last = messages[-1] if messages else None
    if last is not None and last["role"] == role:
        if last.get("content") is None:
            last["content"] = []
        last["content"].append(part)
    else:
        messages.append({"role": role, "content": [part]})


def _add_tool_call(messages: list[dict[str, Any]], tool_use: ToolUseContent) -> None:
    tool_call = {
        "id": tool_use.id,
        "type": "function",
        "function": {"name": tool_use.name, "arguments": json.dumps(tool_use.input)},
    }
    last = messages[-1] if messages else None
    if last is not None and last["role"] == "assistant":
        last.setdefault("tool_calls", []).append(tool_call)
    else:
        messages.append({"role": "assistant", "content": None, "tool_calls": [tool_call]})


def _tool_result_part(result: ToolResultContent) -> dict[str, Any]:
    if isinstance(result.content, ImageContent):
        return {"type": "image_url", "image_url": {"url": result.content.to_base64_url()}}
    return {"type": "text", "text": result.content}


class OpenAIEventMapper:
    """Turns Chat Completions stream chunks into canonical completion events.

    Tool calls are keyed by their ``index``; the stop event is held back until
    the stream ends because usage arrives in a trailing chunk.
    """

    _logger = logging.getLogger(__name__)

    def __init__(self) -> None:
        self.tool_calls_by_index: dict[int, RawToolUse] = {}
        self.usage = TokenUsage()
        self.stop_reason: StopReason | None = None
        self._message_started = False

    async def map_stream(
        self, events: AsyncIterator[dict[str, Any]]
    ) -> AsyncIterator[CompletionEvent]:
        async with aclosing(events):
            async for event in events:
                for mapped in self.map_event(event):
                    yield mapped
        for mapped in self.finish():
            yield mapped

    def map_event(self, chunk: dict[str, Any]) -> list[CompletionEvent]:
        if chunk.get("error"):
            raise classify_stream_error("openai", chunk["error"])

        events: list[CompletionEvent] = []
        if not self._message_started and chunk.get("id"):
            self._message_started = True
            events.append(StartMessageEvent(message_id=chunk["id"]))

        usage = chunk.get("usage")
        if usage:
            details = usage.get("prompt_tokens_details") or {}
            self.usage = self.usage.merged(
                input_tokens=usage.get("prompt_tokens"),
                output_tokens=usage.get("completion_tokens"),
                cache_read_input_tokens=details.get("cached_tokens"),
            )
            events.append(UsageUpdateEvent(usage=self.usage))

        choices = chunk.get("choices") or []
        if not choices:
            return events
        choice = choices[0]
        delta = choice.get("delta") or {}

        if delta.get("reasoning_content"):
            events.append(ThinkingEvent(text=delta["reasoning_content"]))
        if delta.get("content"):
            events.append(TextEvent(text=delta["content"]))
        for tool_call in delta.get("tool_calls") or []:
            event = self._tool_call_delta(tool_call)
            if event is not None:
                events.append(event)

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            events.extend(self._flush_tool_calls())
            self.stop_reason = parse_stop_reason("openai", finish_reason, _STOP_REASONS)
        return events

    def finish(self) -> list[CompletionEvent]:
        """Events owed once the stream is exhausted.

        Tool calls still pending because no ``finish_reason`` arrived are
        flushed here, before the stop event.
        """
        events = self._flush_tool_calls()
        if self.stop_reason is not None:
            events.append(StopEvent(reason=self.stop_reason))
        return events

    def _flush_tool_calls(self) -> list[CompletionEvent]:
        events: list[CompletionEvent] = []
        for index in sorted(self.tool_calls_by_index):
            tool_call = self.tool_calls_by_index[index]
            if not (tool_call.id and tool_call.name):
                self._logger.warning(
                    "Dropping tool call at index %s without id or name: %r",
                    index,
                    tool_call.input_json,
                )
                continue
            events.append(tool_call.final_event())
        self.tool_calls_by_index.clear()
        return events

    def _tool_call_delta(self, tool_call: dict[str, Any]) -> CompletionEvent | None:
        entry = self.tool_calls_by_index.setdefault(
            tool_call.get("index", 0), RawToolUse(id="", name="")
        )
        if tool_call.get("id"):
            entry.id = tool_call["id"]
        function = tool_call.get("function") or {}
        if function.get("name"):
            entry.name = function["name"]
        arguments = function.get("arguments")
        if not arguments:
            return None
        entry.input_json += arguments
        if not (entry.id and entry.name):
            return None
        return entry.speculative_event()


class OpenAIProvider(BaseProvider):
    """Streams completions from the OpenAI Chat Completions API."""

    name = "openai"
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        api_key: str | None,
        model: OpenAIModel,
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
        settings: OpenAISettings,
        *,
        model: OpenAIModel,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OpenAIProvider:
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
            max_mode=False,
        )

    def build_request(self, req: CompletionRequest) -> dict[str, Any]:
        return into_openai(
            req,
            self.model.id,
            self.model.max_output_tokens,
            self.model.supports_parallel_tool_calls,
            self.model.cache_hints,
        )

    def stream(self, req: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        """Return an async iterator of canonical events for ``req``."""

        async def _gen() -> AsyncIterator[CompletionEvent]:
            if not self._api_key:
                raise MissingCredential(self.name)
            payload = self.build_request(req)
            self._logger.debug("Streaming %s with %d messages", self.model.id, len(payload["messages"]))

            mapper = OpenAIEventMapper()
            headers = {
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            }
            events = self._transport.send(_CHAT_PATH, payload, headers)
            async with aclosing(mapper.map_stream(events)) as mapped:
                async for event in mapped:
                    yield event

        return _gen()
