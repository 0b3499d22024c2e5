"""Tests for llm_gateway.dispatcher. All mock litellm.acompletion (no real API calls)."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import litellm
import pytest
from pydantic import BaseModel

from llm_gateway.dispatcher import (
    LiteLLMDispatcher,
    build_call_kwargs,
    build_output_directive,
    build_provider_messages,
    build_reply_from_response,
)
from llm_gateway.errors import TransportAuthError, TransportError, TransportUnavailableError
from llm_gateway.schema import JsonSchema, PydanticSchema
from llm_gateway.types import CompletionRequest, ImageAttachment, ResponseSchema


class Inner(BaseModel):
    label: str


class Outer(BaseModel):
    title: str
    items: list[Inner]


def _mock_response(
    content: str | None = "Hello!",
    tool_calls: list[Any] | None = None,
    finish_reason: str = "stop",
) -> SimpleNamespace:
    """Build a litellm-shaped response."""
    return SimpleNamespace(
        id="chatcmpl-1",
        model="gpt-4o-2024-08-06",
        created=1700000000,
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(role="assistant", content=content, tool_calls=tool_calls),
                finish_reason=finish_reason,
            ),
        ],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )


def _request(**kwargs: Any) -> CompletionRequest:
    kwargs.setdefault("model", "gpt-4o")
    kwargs.setdefault("messages", [{"role": "user", "content": "Hi"}])
    return CompletionRequest(**kwargs)


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


class TestBuildProviderMessages:
    def test_plain_messages(self) -> None:
        assert build_provider_messages(_request()) == [{"role": "user", "content": "Hi"}]

    def test_image_appended_as_user_turn(self) -> None:
        request = _request(image=ImageAttachment(buffer=b"abc", description="the login page"))
        messages = build_provider_messages(request)
        assert len(messages) == 2
        image_msg = messages[-1]
        assert image_msg["role"] == "user"
        assert image_msg["content"][0] == {
            "type": "image_url",
            "image_url": {"url": "data:image/jpeg;base64,YWJj"},
        }
        assert image_msg["content"][1] == {"type": "text", "text": "the login page"}

    def test_image_without_description(self) -> None:
        messages = build_provider_messages(_request(image=ImageAttachment(buffer=b"abc")))
        assert len(messages[-1]["content"]) == 1


class TestBuildCallKwargs:
    def test_only_set_fields_forwarded(self) -> None:
        kwargs = build_call_kwargs(_request(temperature=0.2), None, timeout=30, api_base=None)
        assert kwargs["temperature"] == 0.2
        assert kwargs["timeout"] == 30
        for absent in ("top_p", "frequency_penalty", "presence_penalty", "tools", "tool_choice",
                       "response_format", "api_base", "max_tokens"):
            assert absent not in kwargs

    def test_tools_and_choice(self) -> None:
        tool = {"type": "function", "function": {"name": "f"}}
        kwargs = build_call_kwargs(
            _request(tools=[tool], tool_choice="auto"), None, timeout=60, api_base="http://proxy",
        )
        assert kwargs["tools"] == [tool]
        assert kwargs["tool_choice"] == "auto"
        assert kwargs["api_base"] == "http://proxy"

    def test_directive_forwarded(self) -> None:
        directive = {"type": "json_schema", "json_schema": {"name": "x", "schema": {}, "strict": True}}
        kwargs = build_call_kwargs(_request(), directive, timeout=60, api_base=None)
        assert kwargs["response_format"] is directive


class TestBuildOutputDirective:
    def test_strict_nested_objects(self) -> None:
        directive = build_output_directive(ResponseSchema(schema=PydanticSchema(Outer), name="outer"))
        assert directive["type"] == "json_schema"
        js = directive["json_schema"]
        assert js["name"] == "outer"
        assert js["strict"] is True
        assert js["schema"]["additionalProperties"] is False
        assert js["schema"]["$defs"]["Inner"]["additionalProperties"] is False

    def test_caller_schema_not_mutated(self) -> None:
        raw = {"type": "object", "properties": {"a": {"type": "string"}}}
        build_output_directive(ResponseSchema(schema=JsonSchema(raw), name="a"))
        assert "additionalProperties" not in raw


# ---------------------------------------------------------------------------
# Reply extraction
# ---------------------------------------------------------------------------


class TestBuildReply:
    def test_fields(self) -> None:
        reply = build_reply_from_response(_mock_response(), "gpt-4o")
        assert reply.id == "chatcmpl-1"
        assert reply.model == "gpt-4o-2024-08-06"
        assert reply.content == "Hello!"
        assert reply.choices[0].finish_reason == "stop"
        assert reply.usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}

    def test_native_tool_calls(self) -> None:
        tc = SimpleNamespace(
            id="call_1",
            type="function",
            function=SimpleNamespace(name="search", arguments='{"q": "x"}'),
        )
        reply = build_reply_from_response(_mock_response(None, [tc], "tool_calls"), "gpt-4o")
        assert reply.content is None
        assert reply.tool_calls[0].call_id == "call_1"
        assert reply.tool_calls[0].name == "search"
        assert reply.tool_calls[0].arguments == '{"q": "x"}'


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestLiteLLMDispatcher:
    @patch("llm_gateway.dispatcher.litellm.acompletion", new_callable=AsyncMock)
    async def test_dispatch(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.return_value = _mock_response("Hi there")
        dispatcher = LiteLLMDispatcher(timeout=15)
        reply = await dispatcher.dispatch(_request(temperature=0.4))
        assert reply.content == "Hi there"
        kwargs = mock_acomp.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.4
        assert kwargs["timeout"] == 15

    @patch("llm_gateway.dispatcher.litellm.acompletion", new_callable=AsyncMock)
    async def test_provider_error_wrapped(self, mock_acomp: AsyncMock) -> None:
        original = litellm.AuthenticationError(
            message="Invalid API key", model="gpt-4o", llm_provider="openai",
        )
        mock_acomp.side_effect = original
        with pytest.raises(TransportAuthError) as exc_info:
            await LiteLLMDispatcher().dispatch(_request())
        assert exc_info.value.original is original
        assert exc_info.value.__cause__ is original

    @patch("llm_gateway.dispatcher.litellm.acompletion", new_callable=AsyncMock)
    async def test_connection_error_wrapped(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.side_effect = ConnectionError("connection reset by peer")
        with pytest.raises(TransportUnavailableError):
            await LiteLLMDispatcher().dispatch(_request())

    @patch("llm_gateway.dispatcher.litellm.acompletion", new_callable=AsyncMock)
    async def test_unknown_error_is_transport_error(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.side_effect = RuntimeError("weird")
        with pytest.raises(TransportError):
            await LiteLLMDispatcher().dispatch(_request())
