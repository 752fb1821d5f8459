"""Provider-agnostic translation layer for streaming LLM completion APIs."""

from llm_bridge.client import LLMClient
from llm_bridge.json_repair import repair_json
from llm_bridge.types import (
    CompletionEvent,
    CompletionMode,
    CompletionRequest,
    ImageContent,
    RedactedThinkingContent,
    RequestMessage,
    Role,
    StopReason,
    TextContent,
    ThinkingContent,
    TokenUsage,
    ToolChoice,
    ToolDefinition,
    ToolResultContent,
    ToolUseContent,
)

__all__ = [
    "LLMClient",
    "repair_json",
    "CompletionEvent",
    "CompletionMode",
    "CompletionRequest",
    "ImageContent",
    "RedactedThinkingContent",
    "RequestMessage",
    "Role",
    "StopReason",
    "TextContent",
    "ThinkingContent",
    "TokenUsage",
    "ToolChoice",
    "ToolDefinition",
    "ToolResultContent",
    "ToolUseContent",
]
