"""Provider dispatch via litellm.

The gateway talks to providers only through the ``Dispatcher`` protocol, so
tests and alternative transports can plug in without touching retry or cache
logic. ``LiteLLMDispatcher`` is the default implementation.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Protocol, runtime_checkable

import litellm

from llm_gateway.errors import SchemaParseError, wrap_transport_error
from llm_gateway.types import (
    CompletionReply,
    CompletionRequest,
    ReplyChoice,
    ReplyMessage,
    ResponseSchema,
    ToolFunction,
    ToolInvocationRecord,
)

logger = logging.getLogger(__name__)

# Silence litellm's noisy default logging
litellm.suppress_debug_info = True

_SAMPLING_FIELDS = ("temperature", "top_p", "frequency_penalty", "presence_penalty", "max_tokens")


@runtime_checkable
class Dispatcher(Protocol):
    """Transport to the model provider."""

    async def dispatch(
        self,
        request: CompletionRequest,
        output_directive: dict[str, Any] | None = None,
    ) -> CompletionReply: ...


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


def _strict_json_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Add additionalProperties: false to all objects for OpenAI strict mode.

    OpenAI's structured output requires every object in the schema to have
    additionalProperties: false. Pydantic's model_json_schema() doesn't
    include this by default.
    """
    if schema.get("type") == "object":
        schema["additionalProperties"] = False
        for prop in schema.get("properties", {}).values():
            _strict_json_schema(prop)
    if "items" in schema and isinstance(schema["items"], dict):
        _strict_json_schema(schema["items"])
    for key in ("anyOf", "allOf", "oneOf"):
        for sub in schema.get(key, []):
            _strict_json_schema(sub)
    for defn in schema.get("$defs", {}).values():
        _strict_json_schema(defn)
    return schema


def build_output_directive(response_schema: ResponseSchema) -> dict[str, Any]:
    """Native structured-output ``response_format`` for *response_schema*.

    Raises SchemaParseError when the schema can't describe itself.
    """
    try:
        portable = response_schema.schema.to_portable_schema()
    except Exception as e:
        raise SchemaParseError(
            f"Could not describe schema {response_schema.name!r}: {e}",
            original=e,
        ) from e
    schema = _strict_json_schema(copy.deepcopy(portable))
    return {
        "type": "json_schema",
        "json_schema": {
            "name": response_schema.name,
            "schema": schema,
            "strict": True,
        },
    }


def build_provider_messages(request: CompletionRequest) -> list[dict[str, Any]]:
    """Chat messages in OpenAI format, with the image attached as a final user turn."""
    messages = list(request.messages)
    if request.image is not None:
        messages.append(request.image.to_message())
    return [m.model_dump(mode="python") for m in messages]


def build_call_kwargs(
    request: CompletionRequest,
    output_directive: dict[str, Any] | None,
    *,
    timeout: int,
    api_base: str | None,
) -> dict[str, Any]:
    """Build the litellm.acompletion kwargs. Only fields that are set are forwarded."""
    call_kwargs: dict[str, Any] = {
        "model": request.model,
        "messages": build_provider_messages(request),
        "timeout": timeout,
    }
    for name in _SAMPLING_FIELDS:
        value = getattr(request, name)
        if value is not None:
            call_kwargs[name] = value
    if request.tools:
        call_kwargs["tools"] = list(request.tools)
        if request.tool_choice is not None:
            call_kwargs["tool_choice"] = request.tool_choice
    if output_directive is not None:
        call_kwargs["response_format"] = output_directive
    if api_base is not None:
        call_kwargs["api_base"] = api_base
    return call_kwargs


# ---------------------------------------------------------------------------
# Reply extraction
# ---------------------------------------------------------------------------


def _extract_tool_calls(message: Any) -> list[ToolInvocationRecord]:
    """Extract tool calls from a provider message into canonical records."""
    raw_calls = getattr(message, "tool_calls", None)
    if not raw_calls:
        return []
    records: list[ToolInvocationRecord] = []
    for tc in raw_calls:
        records.append(ToolInvocationRecord(
            id=_typed_attr(tc, "id", str, ""),
            function=ToolFunction(
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            ),
        ))
    return records


def _extract_usage(response: Any) -> dict[str, Any]:
    """Extract token usage dict from litellm response."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return {}
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0),
        "completion_tokens": getattr(usage, "completion_tokens", 0),
        "total_tokens": getattr(usage, "total_tokens", 0),
    }


def _typed_attr(obj: Any, name: str, kind: type, default: Any) -> Any:
    value = getattr(obj, name, None)
    return value if isinstance(value, kind) and value else default


def build_reply_from_response(response: Any, model: str) -> CompletionReply:
    """Convert a litellm ModelResponse into a CompletionReply."""
    choices = [
        ReplyChoice(
            index=i,
            message=ReplyMessage(
                role=_typed_attr(choice.message, "role", str, "assistant"),
                content=choice.message.content,
                tool_calls=_extract_tool_calls(choice.message),
            ),
            finish_reason=_typed_attr(choice, "finish_reason", str, ""),
        )
        for i, choice in enumerate(response.choices)
    ]
    return CompletionReply(
        id=_typed_attr(response, "id", str, ""),
        model=_typed_attr(response, "model", str, model),
        created=_typed_attr(response, "created", int, 0),
        choices=choices,
        usage=_extract_usage(response),
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class LiteLLMDispatcher:
    """Dispatch completions through ``litellm.acompletion``.

    Args:
        timeout: Request timeout in seconds
        api_base: Optional API base URL (e.g., for a proxy)
    """

    def __init__(self, *, timeout: int = 60, api_base: str | None = None) -> None:
        self.timeout = timeout
        self.api_base = api_base

    async def dispatch(
        self,
        request: CompletionRequest,
        output_directive: dict[str, Any] | None = None,
    ) -> CompletionReply:
        call_kwargs = build_call_kwargs(
            request,
            output_directive,
            timeout=self.timeout,
            api_base=self.api_base,
        )
        try:
            response = await litellm.acompletion(**call_kwargs)
        except Exception as e:
            raise wrap_transport_error(e) from e
        reply = build_reply_from_response(response, request.model)
        logger.debug(
            "Dispatched %s: tokens=%s finish=%s",
            request.model,
            reply.usage.get("total_tokens", "?"),
            reply.choices[0].finish_reason if reply.choices else "",
        )
        return reply
