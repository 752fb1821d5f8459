"""Provider-agnostic base interfaces and helpers."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from llm_bridge.json_repair import repair_json
from llm_bridge.types import (
    CompletionEvent,
    CompletionMode,
    CompletionRequest,
    StopReason,
    ToolUseContent,
    ToolUseEvent,
    ToolUseJsonParseErrorEvent,
)

CACHE_CONTROL = {"type": "ephemeral"}

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelCapabilities:
    """Describes feature support and limits of a provider model."""

    max_tokens: int
    max_output_tokens: int | None
    tools: bool
    max_mode: bool
    max_tokens_in_max_mode: int | None = None

    def max_token_count_for_mode(self, mode: CompletionMode | None) -> int:
        if mode is CompletionMode.MAX and self.max_mode and self.max_tokens_in_max_mode:
            return self.max_tokens_in_max_mode
        return self.max_tokens


class BaseProvider(ABC):
    """Abstract base class for provider implementations."""

    name: str

    @abstractmethod
    def capabilities(self) -> ModelCapabilities:
        """Return capability flags for the configured model."""
        raise NotImplementedError

    @abstractmethod
    def build_request(self, req: CompletionRequest) -> dict[str, Any]:
        """Translate a canonical request into the provider wire payload."""
        raise NotImplementedError

    @abstractmethod
    def stream(self, req: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        """Yield canonical events for the request, raising ``CompletionError`` on failure."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release transport resources."""


@dataclass
class RawToolUse:
    """Tool call whose arguments are still streaming in."""

    id: str
    name: str
    input_json: str = ""

    def speculative_event(self) -> ToolUseEvent | None:
        """Best-effort partial tool use, or ``None`` when the text cannot be repaired."""
        try:
            value = json.loads(repair_json(self.input_json))
        except ValueError:
            return None
        return ToolUseEvent(
            tool_use=ToolUseContent(
                id=self.id,
                name=self.name,
                raw_input=self.input_json,
                input=value,
                is_input_complete=False,
            )
        )

    def final_event(self) -> ToolUseEvent | ToolUseJsonParseErrorEvent:
        """Strictly parse the accumulated arguments; never the repaired text."""
        input_json = self.input_json.strip()
        try:
            value = json.loads(input_json) if input_json else {}
        except ValueError as exc:
            return ToolUseJsonParseErrorEvent(
                id=self.id,
                tool_name=self.name,
                raw_input=input_json,
                json_parse_error=str(exc),
            )
        return ToolUseEvent(
            tool_use=ToolUseContent(
                id=self.id,
                name=self.name,
                raw_input=self.input_json,
                input=value,
                is_input_complete=True,
            )
        )


def parse_stop_reason(provider: str, value: str, mapping: dict[str, StopReason]) -> StopReason:
    """Translate a provider stop reason, falling back to ``END_TURN``."""
    try:
        return mapping[value]
    except KeyError:
        _logger.error("Unexpected %s stop_reason: %s", provider, value)
        return StopReason.END_TURN


def trim_last_text(blocks: list[dict[str, Any]]) -> None:
    """Strip trailing whitespace from the last text block, in place."""
    for block in reversed(blocks):
        if block.get("type") == "text":
            block["text"] = block["text"].rstrip()
            return


def mark_cacheable(blocks: list[dict[str, Any]], skip_types: tuple[str, ...]) -> None:
    """Put the cache marker on the last block able to carry one."""
    for block in reversed(blocks):
        if block.get("type") in skip_types:
            continue
        block["cache_control"] = dict(CACHE_CONTROL)
        return
