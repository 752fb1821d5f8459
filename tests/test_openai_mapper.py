import asyncio
import unittest
from collections.abc import AsyncIterator
from typing import Any

from llm_bridge.errors import PromptTooLarge, RateLimitExceeded
from llm_bridge.providers.openai import OpenAIEventMapper
from llm_bridge.types import (
    CompletionEvent,
    StartMessageEvent,
    StopEvent,
    StopReason,
    TextEvent,
    ThinkingEvent,
    TokenUsage,
    ToolUseEvent,
    ToolUseJsonParseErrorEvent,
    UsageUpdateEvent,
)


def _chunk(delta: dict[str, Any] | None = None, finish_reason: str | None = None, **extra: Any) -> dict[str, Any]:
    chunk: dict[str, Any] = {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}],
    }
    chunk.update(extra)
    return chunk


def _tool_delta(index: int, arguments: str, call_id: str | None = None, name: str | None = None) -> dict[str, Any]:
    call: dict[str, Any] = {"index": index, "function": {"arguments": arguments}}
    if call_id:
        call["id"] = call_id
        call["type"] = "function"
    if name:
        call["function"]["name"] = name
    return {"tool_calls": [call]}


async def _source(chunks: list[dict[str, Any]]) -> AsyncIterator[dict[str, Any]]:
    for chunk in chunks:
        yield chunk


def _collect(chunks: list[dict[str, Any]]) -> list[CompletionEvent]:
    async def _run() -> list[CompletionEvent]:
        return [event async for event in OpenAIEventMapper().map_stream(_source(chunks))]

    return asyncio.run(_run())


class OpenAIEventMapperTests(unittest.TestCase):
    def test_text_stream(self) -> None:
        usage_chunk = {
            "id": "chatcmpl-1",
            "choices": [],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3, "prompt_tokens_details": {"cached_tokens": 8}},
        }
        events = _collect(
            [
                _chunk({"role": "assistant", "content": ""}),
                _chunk({"content": "Hel"}),
                _chunk({"content": "lo"}),
                _chunk({}, finish_reason="stop"),
                usage_chunk,
            ]
        )
        usage = TokenUsage(input_tokens=12, output_tokens=3, cache_read_input_tokens=8)
        self.assertEqual(
            events,
            [
                StartMessageEvent(message_id="chatcmpl-1"),
                TextEvent(text="Hel"),
                TextEvent(text="lo"),
                UsageUpdateEvent(usage=usage),
                StopEvent(reason=StopReason.END_TURN),
            ],
        )

    def test_reasoning_content_becomes_thinking(self) -> None:
        mapper = OpenAIEventMapper()
        events = mapper.map_event(_chunk({"reasoning_content": "first, "}))
        self.assertEqual(events, [StartMessageEvent(message_id="chatcmpl-1"), ThinkingEvent(text="first, ")])
        self.assertEqual(mapper.map_event(_chunk({"reasoning_content": "then"})), [ThinkingEvent(text="then")])

    def test_tool_calls_accumulate_by_index(self) -> None:
        events = _collect(
            [
                _chunk(_tool_delta(0, "", call_id="call_a", name="get_weather")),
                _chunk(_tool_delta(1, '{"tz": ', call_id="call_b", name="get_time")),
                _chunk(_tool_delta(0, '{"city": "Par')),
                _chunk(_tool_delta(1, '"UTC"}')),
                _chunk(_tool_delta(0, 'is"}')),
                _chunk({}, finish_reason="tool_calls"),
            ]
        )
        partial = [e for e in events if isinstance(e, ToolUseEvent) and not e.tool_use.is_input_complete]
        final = [e for e in events if isinstance(e, ToolUseEvent) and e.tool_use.is_input_complete]

        self.assertEqual(partial[0].tool_use.input, {"tz": None})
        self.assertEqual(partial[1].tool_use.input, {"city": "Par"})
        self.assertEqual([e.tool_use.id for e in final], ["call_a", "call_b"])
        self.assertEqual(final[0].tool_use.input, {"city": "Paris"})
        self.assertEqual(final[0].tool_use.name, "get_weather")
        self.assertEqual(final[1].tool_use.input, {"tz": "UTC"})
        self.assertEqual(events[-1], StopEvent(reason=StopReason.TOOL_USE))

    def test_arguments_before_id_are_kept(self) -> None:
        mapper = OpenAIEventMapper()
        self.assertEqual(mapper.map_event({"choices": [{"delta": _tool_delta(0, '{"a": ')}]}), [])
        events = mapper.map_event({"choices": [{"delta": _tool_delta(0, "1}", call_id="call_1", name="f")}]})
        self.assertEqual(events[0].tool_use.input, {"a": 1})
        self.assertEqual(events[0].tool_use.raw_input, '{"a": 1}')

    def test_malformed_arguments_flush_as_parse_error(self) -> None:
        events = _collect(
            [
                _chunk(_tool_delta(0, '{"path": ', call_id="call_1", name="read")),
                _chunk({}, finish_reason="tool_calls"),
            ]
        )
        errors = [e for e in events if isinstance(e, ToolUseJsonParseErrorEvent)]
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].id, "call_1")
        self.assertEqual(errors[0].tool_name, "read")
        self.assertEqual(errors[0].raw_input, '{"path":')

    def test_stop_is_last_even_when_usage_trails(self) -> None:
        events = _collect(
            [
                _chunk({"content": "cut"}, finish_reason="length"),
                {"id": "chatcmpl-1", "choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 100}},
            ]
        )
        self.assertIsInstance(events[-2], UsageUpdateEvent)
        self.assertEqual(events[-1], StopEvent(reason=StopReason.MAX_TOKENS))
        self.assertEqual(sum(isinstance(e, StartMessageEvent) for e in events), 1)

    def test_no_finish_reason_means_no_stop(self) -> None:
        events = _collect([_chunk({"content": "partial"})])
        self.assertFalse(any(isinstance(e, StopEvent) for e in events))

    def test_tool_call_without_id_is_dropped_at_finish(self) -> None:
        with self.assertLogs("llm_bridge.providers.openai", level="WARNING") as logs:
            events = _collect(
                [
                    _chunk(_tool_delta(0, '{"a": 1}')),
                    _chunk(_tool_delta(1, "{}", call_id="call_2", name="noop")),
                    _chunk({}, finish_reason="tool_calls"),
                ]
            )
        self.assertIn("index 0", logs.output[0])
        self.assertFalse(any(isinstance(e, ToolUseJsonParseErrorEvent) for e in events))
        final = [e for e in events if isinstance(e, ToolUseEvent) and e.tool_use.is_input_complete]
        self.assertEqual([e.tool_use.id for e in final], ["call_2"])

    def test_pending_tool_calls_flush_when_stream_ends(self) -> None:
        mapper = OpenAIEventMapper()
        mapper.map_event(_chunk(_tool_delta(0, '{"path": "a.py"}', call_id="call_1", name="read")))
        events = mapper.finish()
        self.assertEqual(len(events), 1)
        self.assertTrue(events[0].tool_use.is_input_complete)
        self.assertEqual(events[0].tool_use.input, {"path": "a.py"})
        self.assertEqual(mapper.tool_calls_by_index, {})
        self.assertEqual(mapper.finish(), [])

    def test_content_filter_is_refusal(self) -> None:
        events = _collect([_chunk({}, finish_reason="content_filter")])
        self.assertEqual(events[-1], StopEvent(reason=StopReason.REFUSAL))

    def test_error_chunk_raises(self) -> None:
        mapper = OpenAIEventMapper()
        with self.assertRaises(RateLimitExceeded):
            mapper.map_event({"error": {"type": "rate_limit_exceeded", "message": "slow down"}})
        with self.assertRaises(PromptTooLarge):
            mapper.map_event(
                {"error": {"code": "context_length_exceeded", "message": "your messages resulted in 9000 tokens"}}
            )


if __name__ == "__main__":
    unittest.main()
