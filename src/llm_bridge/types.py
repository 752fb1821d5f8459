"""Provider-agnostic request, content and streaming event models."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class CompletionIntent(str, Enum):
    """What the caller is using the completion for."""

    USER_PROMPT = "user_prompt"
    TOOL_RESULTS = "tool_results"
    THREAD_SUMMARIZATION = "thread_summarization"
    THREAD_CONTEXT_SUMMARIZATION = "thread_context_summarization"
    CREATE_FILE = "create_file"
    EDIT_FILE = "edit_file"
    INLINE_ASSIST = "inline_assist"
    TERMINAL_INLINE_ASSIST = "terminal_inline_assist"
    GENERATE_GIT_COMMIT_MESSAGE = "generate_git_commit_message"


class CompletionMode(str, Enum):
    NORMAL = "normal"
    MAX = "max"


class ToolChoice(str, Enum):
    AUTO = "auto"
    ANY = "any"
    NONE = "none"


class StopReason(str, Enum):
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    REFUSAL = "refusal"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


def _is_blank(text: str) -> bool:
    return not text or text.isspace()


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------


class ImageContent(_Frozen):
    """Base64-encoded image payload."""

    type: Literal["image"] = "image"
    source: str
    media_type: str = "image/png"

    def to_base64_url(self) -> str:
        return f"data:{self.media_type};base64,{self.source}"

    def is_empty(self) -> bool:
        return False

    def to_str(self) -> str | None:
        return None


class TextContent(_Frozen):
    type: Literal["text"] = "text"
    text: str

    def is_empty(self) -> bool:
        return _is_blank(self.text)

    def to_str(self) -> str | None:
        return self.text


class ThinkingContent(_Frozen):
    type: Literal["thinking"] = "thinking"
    text: str
    signature: str | None = None

    def is_empty(self) -> bool:
        return _is_blank(self.text)

    def to_str(self) -> str | None:
        return self.text


class RedactedThinkingContent(_Frozen):
    """Thinking withheld by the provider; only the opaque blob is kept."""

    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str

    def is_empty(self) -> bool:
        return False

    def to_str(self) -> str | None:
        return None


class ToolUseContent(_Frozen):
    """A tool call made by the model.

    ``raw_input`` is the argument text exactly as streamed; ``input`` is the
    parsed value (possibly speculative when ``is_input_complete`` is false).
    """

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    raw_input: str = ""
    input: Any = Field(default_factory=dict)
    is_input_complete: bool = True

    def is_empty(self) -> bool:
        return False

    def to_str(self) -> str | None:
        return None


def _get_field(obj: dict[str, Any], name: str) -> Any:
    for key, value in obj.items():
        if isinstance(key, str) and key.lower() == name:
            return value
    return None


class ToolResultContent(_Frozen):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    tool_name: str
    is_error: bool = False
    content: Union[str, ImageContent]
    output: Any = None

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> Any:
        # Models return tool results in several shapes; accept the common ones.
        if isinstance(value, (str, ImageContent)):
            return value
        if not isinstance(value, dict):
            raise ValueError(f"unsupported tool result content: {value!r}")

        type_value = _get_field(value, "type")
        text_value = _get_field(value, "text")
        if isinstance(type_value, str) and type_value.lower() == "text" and isinstance(text_value, str):
            return text_value
        if len(value) == 1 and isinstance(text_value, str):
            return text_value

        image = _get_field(value, "image")
        if len(value) == 1 and isinstance(image, dict):
            return ImageContent.model_validate(image)
        if "source" in value:
            return ImageContent.model_validate(value)

        raise ValueError(
            "tool result content must be a string, an object with 'type': 'text', "
            f"a wrapped {{'text': ...}} value, or an image object; got {value!r}"
        )

    def text(self) -> str | None:
        return self.content if isinstance(self.content, str) else None

    def is_empty(self) -> bool:
        text = self.text()
        return text is not None and _is_blank(text)

    def to_str(self) -> str | None:
        return self.text()


MessageContent = Annotated[
    Union[
        TextContent,
        ThinkingContent,
        RedactedThinkingContent,
        ImageContent,
        ToolUseContent,
        ToolResultContent,
    ],
    Field(discriminator="type"),
]


class RequestMessage(_Frozen):
    """Single conversation message made of ordered content units."""

    role: Role
    content: list[MessageContent] = Field(default_factory=list)
    cache: bool = False

    def string_contents(self) -> str:
        return "".join(text for text in (c.to_str() for c in self.content) if text is not None)

    def contents_empty(self) -> bool:
        return all(c.is_empty() for c in self.content)


class ToolDefinition(_Frozen):
    """JSON-schema tool declaration, passed through to providers untouched."""

    name: str = Field(min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class CompletionRequest(_Frozen):
    """Normalized request shared by all providers."""

    thread_id: str | None = None
    prompt_id: str | None = None
    intent: CompletionIntent | None = None
    mode: CompletionMode | None = None
    messages: list[RequestMessage] = Field(default_factory=list)
    tools: list[ToolDefinition] = Field(default_factory=list)
    tool_choice: ToolChoice | None = None
    stop: list[str] = Field(default_factory=list)
    temperature: float | None = None
    thinking_allowed: bool = False


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


class TokenUsage(_Frozen):
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cache_creation_input_tokens: int = Field(default=0, ge=0)
    cache_read_input_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )

    def merged(
        self,
        *,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        cache_creation_input_tokens: int | None = None,
        cache_read_input_tokens: int | None = None,
    ) -> TokenUsage:
        """Return a copy where every present count replaces the current one.

        Providers report running totals, so counts are never summed.
        """
        update = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_creation_input_tokens": cache_creation_input_tokens,
            "cache_read_input_tokens": cache_read_input_tokens,
        }
        return self.model_copy(update={k: v for k, v in update.items() if v is not None})


# ---------------------------------------------------------------------------
# Completion events
# ---------------------------------------------------------------------------


class QueuedStatus(_Frozen):
    kind: Literal["queued"] = "queued"
    position: int


class StartedStatus(_Frozen):
    kind: Literal["started"] = "started"


class FailedStatus(_Frozen):
    kind: Literal["failed"] = "failed"
    code: str
    message: str
    request_id: UUID
    # seconds
    retry_after: float | None = None


class UsageUpdatedStatus(_Frozen):
    kind: Literal["usage_updated"] = "usage_updated"
    amount: int
    limit: Union[int, Literal["unlimited"]]


class ToolUseLimitReachedStatus(_Frozen):
    kind: Literal["tool_use_limit_reached"] = "tool_use_limit_reached"


CompletionRequestStatus = Annotated[
    Union[QueuedStatus, StartedStatus, FailedStatus, UsageUpdatedStatus, ToolUseLimitReachedStatus],
    Field(discriminator="kind"),
]


class StatusUpdateEvent(_Frozen):
    type: Literal["status_update"] = "status_update"
    status: CompletionRequestStatus


class StopEvent(_Frozen):
    type: Literal["stop"] = "stop"
    reason: StopReason


class TextEvent(_Frozen):
    type: Literal["text"] = "text"
    text: str


class ThinkingEvent(_Frozen):
    type: Literal["thinking"] = "thinking"
    text: str
    signature: str | None = None


class RedactedThinkingEvent(_Frozen):
    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str


class ToolUseEvent(_Frozen):
    type: Literal["tool_use"] = "tool_use"
    tool_use: ToolUseContent


class ToolUseJsonParseErrorEvent(_Frozen):
    type: Literal["tool_use_json_parse_error"] = "tool_use_json_parse_error"
    id: str
    tool_name: str
    raw_input: str
    json_parse_error: str


class StartMessageEvent(_Frozen):
    type: Literal["start_message"] = "start_message"
    message_id: str


class UsageUpdateEvent(_Frozen):
    type: Literal["usage_update"] = "usage_update"
    usage: TokenUsage


CompletionEvent = Annotated[
    Union[
        StatusUpdateEvent,
        StopEvent,
        TextEvent,
        ThinkingEvent,
        RedactedThinkingEvent,
        ToolUseEvent,
        ToolUseJsonParseErrorEvent,
        StartMessageEvent,
        UsageUpdateEvent,
    ],
    Field(discriminator="type"),
]
