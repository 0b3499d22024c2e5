"""Tests for text-emulated tool calling.

Tests cover:
- Instruction text lists the tools and the reply shape
- Reconstruction of {name, arguments} into one canonical tool call
- Trailing-garbage recovery
- Parse failures carry the offending content
"""

from __future__ import annotations

import json

import pytest

from llm_gateway.errors import ToolCallParseError
from llm_gateway.tool_shim import (
    EMULATED_CALL_ID,
    _extract_first_json_object,
    build_tool_instruction,
    reconstruct_tool_call,
)
from llm_gateway.types import CompletionReply, ReplyChoice, ReplyMessage


def _reply(content: str | None) -> CompletionReply:
    return CompletionReply(
        model="o1-mini",
        choices=[ReplyChoice(message=ReplyMessage(content=content), finish_reason="stop")],
    )


# ---------------------------------------------------------------------------
# Instruction generation
# ---------------------------------------------------------------------------


class TestBuildToolInstruction:
    def test_includes_tool_definitions(self) -> None:
        tools = [{"type": "function", "function": {"name": "act", "parameters": {"type": "object"}}}]
        text = build_tool_instruction(tools)
        assert json.dumps(tools) in text
        assert '{"name": "<tool_name>", "arguments": <tool_args>}' in text

    def test_forbids_fences(self) -> None:
        assert "```" in build_tool_instruction([])
        assert "Just the JSON object." in build_tool_instruction([])


# ---------------------------------------------------------------------------
# Reconstruction
# ---------------------------------------------------------------------------


class TestReconstructToolCall:
    def test_round_trip(self) -> None:
        reply = reconstruct_tool_call(_reply('{"name":"foo","arguments":{"x":1}}'))
        assert reply.content is None
        assert reply.choices[0].finish_reason == "tool_calls"
        assert len(reply.tool_calls) == 1
        call = reply.tool_calls[0]
        assert call.name == "foo"
        assert call.arguments == '{"x":1}'
        assert call.call_id == EMULATED_CALL_ID
        assert call.type == "function"

    def test_wire_shape_matches_native_calls(self) -> None:
        reply = reconstruct_tool_call(_reply('{"name": "foo", "arguments": {}}'))
        dumped = reply.model_dump()["choices"][0]["message"]["tool_calls"][0]
        assert dumped == {"id": "-1", "type": "function", "function": {"name": "foo", "arguments": "{}"}}

    def test_input_reply_not_mutated(self) -> None:
        original = _reply('{"name": "foo", "arguments": {"x": 1}}')
        reconstruct_tool_call(original)
        assert original.content == '{"name": "foo", "arguments": {"x": 1}}'
        assert original.tool_calls == []

    def test_missing_arguments_default_to_empty_object(self) -> None:
        reply = reconstruct_tool_call(_reply('{"name": "scroll"}'))
        assert reply.tool_calls[0].arguments == "{}"

    def test_string_arguments_kept(self) -> None:
        reply = reconstruct_tool_call(_reply('{"name": "type", "arguments": "{\\"text\\": \\"hi\\"}"}'))
        assert json.loads(reply.tool_calls[0].arguments) == {"text": "hi"}

    def test_trailing_garbage_recovered(self) -> None:
        reply = reconstruct_tool_call(_reply('{"name": "foo", "arguments": {"x": 1}}\nDone!'))
        assert reply.tool_calls[0].name == "foo"

    @pytest.mark.parametrize("content", ["call foo please", "[1, 2]", '{"arguments": {}}', '{"name": 3}', ""])
    def test_unparseable_raises(self, content: str) -> None:
        with pytest.raises(ToolCallParseError) as exc_info:
            reconstruct_tool_call(_reply(content))
        assert exc_info.value.content == content

    def test_none_content_raises(self) -> None:
        with pytest.raises(ToolCallParseError):
            reconstruct_tool_call(_reply(None))


class TestExtractFirstJsonObject:
    def test_no_brace(self) -> None:
        assert _extract_first_json_object("nothing here") is None

    def test_prefix_text(self) -> None:
        assert _extract_first_json_object('Here: {"a": 1} and more') == {"a": 1}

    def test_array_is_not_object(self) -> None:
        assert _extract_first_json_object("[{") is None
