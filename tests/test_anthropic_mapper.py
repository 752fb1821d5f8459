import asyncio
import json
import unittest
from collections.abc import AsyncIterator
from typing import Any

from llm_bridge.errors import RateLimitExceeded, ServerOverloaded
from llm_bridge.providers.anthropic import AnthropicEventMapper
from llm_bridge.types import (
    CompletionEvent,
    RedactedThinkingEvent,
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


def _tool_events(chunks: list[str], index: int = 1) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = [
        {
            "type": "content_block_start",
            "index": index,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {}},
        }
    ]
    events.extend(
        {"type": "content_block_delta", "index": index, "delta": {"type": "input_json_delta", "partial_json": chunk}}
        for chunk in chunks
    )
    events.append({"type": "content_block_stop", "index": index})
    return events


def _map_all(mapper: AnthropicEventMapper, events: list[dict[str, Any]]) -> list[CompletionEvent]:
    mapped: list[CompletionEvent] = []
    for event in events:
        mapped.extend(mapper.map_event(event))
    return mapped


class AnthropicEventMapperTests(unittest.TestCase):
    def setUp(self) -> None:
        self.mapper = AnthropicEventMapper()

    def test_text_and_thinking_blocks(self) -> None:
        events = _map_all(
            self.mapper,
            [
                {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking", "thinking": ""}},
                {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "Let me"}},
                {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "EqQB"}},
                {"type": "content_block_stop", "index": 0},
                {"type": "content_block_start", "index": 1, "content_block": {"type": "redacted_thinking", "data": "xyz"}},
                {"type": "content_block_stop", "index": 1},
                {"type": "content_block_start", "index": 2, "content_block": {"type": "text", "text": ""}},
                {"type": "content_block_delta", "index": 2, "delta": {"type": "text_delta", "text": "Hello"}},
                {"type": "content_block_stop", "index": 2},
            ],
        )
        self.assertEqual(
            events,
            [
                ThinkingEvent(text=""),
                ThinkingEvent(text="Let me"),
                ThinkingEvent(text="", signature="EqQB"),
                RedactedThinkingEvent(data="xyz"),
                TextEvent(text=""),
                TextEvent(text="Hello"),
            ],
        )

    def test_tool_use_streams_speculative_then_final(self) -> None:
        events = _map_all(self.mapper, _tool_events(['{"loc', 'ation": "Par', 'is"}']))
        partial = [e for e in events if isinstance(e, ToolUseEvent) and not e.tool_use.is_input_complete]
        final = [e for e in events if isinstance(e, ToolUseEvent) and e.tool_use.is_input_complete]

        self.assertEqual(partial[0].tool_use.input, {"loc": None})
        self.assertEqual(partial[1].tool_use.input, {"location": "Par"})
        self.assertEqual(partial[1].tool_use.raw_input, '{"location": "Par')
        self.assertEqual(len(final), 1)
        self.assertEqual(final[0].tool_use.input, {"location": "Paris"})
        self.assertEqual(final[0].tool_use.id, "toolu_1")
        self.assertEqual(final[0].tool_use.name, "get_weather")
        self.assertIs(events[-1], final[0])
        self.assertEqual(self.mapper.tool_uses_by_index, {})

    def test_final_tool_use_independent_of_chunking(self) -> None:
        payload = json.dumps({"city": "Paris", "days": [1, 2, 3], "units": {"temp": "C"}})
        expected = json.loads(payload)
        for size in (1, 2, 3, 7, 13, len(payload)):
            with self.subTest(size=size):
                chunks = [payload[i : i + size] for i in range(0, len(payload), size)]
                events = _map_all(AnthropicEventMapper(), _tool_events(chunks))
                final = [e for e in events if isinstance(e, ToolUseEvent) and e.tool_use.is_input_complete]
                self.assertEqual(len(final), 1)
                self.assertEqual(final[0].tool_use.input, expected)
                self.assertEqual(final[0].tool_use.raw_input, payload)

    def test_empty_arguments_parse_as_empty_object(self) -> None:
        events = _map_all(self.mapper, _tool_events(["  "]))
        self.assertIsInstance(events[-1], ToolUseEvent)
        self.assertEqual(events[-1].tool_use.input, {})
        self.assertTrue(events[-1].tool_use.is_input_complete)

    def test_malformed_arguments_become_parse_error_event(self) -> None:
        events = _map_all(self.mapper, _tool_events(['{"a":']))
        last = events[-1]
        self.assertIsInstance(last, ToolUseJsonParseErrorEvent)
        self.assertEqual(last.id, "toolu_1")
        self.assertEqual(last.tool_name, "get_weather")
        self.assertEqual(last.raw_input, '{"a":')
        self.assertTrue(last.json_parse_error)

    def test_delta_for_unknown_index_is_ignored(self) -> None:
        event = {"type": "content_block_delta", "index": 9, "delta": {"type": "input_json_delta", "partial_json": "{}"}}
        self.assertEqual(self.mapper.map_event(event), [])
        self.assertEqual(self.mapper.map_event({"type": "content_block_stop", "index": 9}), [])

    def test_message_lifecycle(self) -> None:
        events = _map_all(
            self.mapper,
            [
                {
                    "type": "message_start",
                    "message": {
                        "id": "msg_1",
                        "usage": {"input_tokens": 10, "output_tokens": 1, "cache_read_input_tokens": 4},
                    },
                },
                {"type": "ping"},
                {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 25}},
                {"type": "message_stop"},
            ],
        )
        usage = TokenUsage(input_tokens=10, output_tokens=25, cache_read_input_tokens=4)
        self.assertEqual(
            events,
            [
                UsageUpdateEvent(usage=TokenUsage(input_tokens=10, output_tokens=1, cache_read_input_tokens=4)),
                StartMessageEvent(message_id="msg_1"),
                UsageUpdateEvent(usage=usage),
                StopEvent(reason=StopReason.TOOL_USE),
            ],
        )

    def test_usage_is_last_writer_wins(self) -> None:
        steps = [
            ({"input_tokens": 10}, TokenUsage(input_tokens=10)),
            ({"output_tokens": 5}, TokenUsage(input_tokens=10, output_tokens=5)),
            ({"input_tokens": 20, "output_tokens": 5}, TokenUsage(input_tokens=20, output_tokens=5)),
        ]
        for usage, expected in steps:
            events = self.mapper.map_event({"type": "message_delta", "delta": {}, "usage": usage})
            self.assertEqual(events, [UsageUpdateEvent(usage=expected)])
        self.assertEqual(self.mapper.usage.cache_creation_input_tokens, 0)
        self.assertEqual(self.mapper.usage.cache_read_input_tokens, 0)

    def test_stop_reasons(self) -> None:
        for raw, expected in (
            ("end_turn", StopReason.END_TURN),
            ("max_tokens", StopReason.MAX_TOKENS),
            ("refusal", StopReason.REFUSAL),
            ("stop_sequence", StopReason.END_TURN),
        ):
            mapper = AnthropicEventMapper()
            mapper.map_event({"type": "message_delta", "delta": {"stop_reason": raw}, "usage": {}})
            self.assertEqual(mapper.map_event({"type": "message_stop"}), [StopEvent(reason=expected)])

    def test_unknown_stop_reason_logs_and_ends_turn(self) -> None:
        with self.assertLogs("llm_bridge.providers.base", level="ERROR") as logs:
            self.mapper.map_event({"type": "message_delta", "delta": {"stop_reason": "pause_turn"}, "usage": {}})
        self.assertIn("pause_turn", logs.output[0])
        self.assertEqual(self.mapper.map_event({"type": "message_stop"}), [StopEvent(reason=StopReason.END_TURN)])

    def test_default_stop_reason_is_end_turn(self) -> None:
        self.assertEqual(self.mapper.map_event({"type": "message_stop"}), [StopEvent(reason=StopReason.END_TURN)])

    def test_error_event_raises_classified_error(self) -> None:
        self.mapper.map_event(_tool_events(["{"])[0])
        with self.assertRaises(ServerOverloaded):
            self.mapper.map_event({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        self.assertIn(1, self.mapper.tool_uses_by_index)

    def test_unknown_events_are_ignored(self) -> None:
        self.assertEqual(self.mapper.map_event({"type": "future_event", "payload": 1}), [])
        self.assertEqual(self.mapper.map_event({"type": "content_block_start", "index": 0, "content_block": {"type": "server_tool_use"}}), [])

    def test_map_stream_stops_at_error(self) -> None:
        async def _events() -> AsyncIterator[dict[str, Any]]:
            yield {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": "a"}}
            yield {"type": "error", "error": {"type": "rate_limit_error", "message": "slow"}}
            yield {"type": "message_stop"}

        async def _run() -> list[CompletionEvent]:
            seen: list[CompletionEvent] = []
            with self.assertRaises(RateLimitExceeded):
                async for event in AnthropicEventMapper().map_stream(_events()):
                    seen.append(event)
            return seen

        self.assertEqual(asyncio.run(_run()), [TextEvent(text="a")])


if __name__ == "__main__":
    unittest.main()
