"""Pure request rewriting for models with a reduced request surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from llm_gateway.capabilities import ModelCapabilities
from llm_gateway.errors import ConflictingOptionsError
from llm_gateway.structured import build_schema_instruction
from llm_gateway.tool_shim import build_tool_instruction
from llm_gateway.types import ChatMessage, CompletionRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedRequest:
    """Request ready for dispatch plus whether tool calling is emulated in text."""

    request: CompletionRequest
    tools_emulated: bool = False


def check_conflicting_options(request: CompletionRequest, capabilities: ModelCapabilities) -> None:
    """Raise ConflictingOptionsError for tools + response schema on a model without native tools."""
    if capabilities.native_tools:
        return
    if request.tools and request.response_schema is not None:
        raise ConflictingOptionsError(
            f"Cannot use both tools and a response schema with {request.model}: "
            "the model has no native tool calling"
        )


def normalize_request(
    request: CompletionRequest,
    capabilities: ModelCapabilities,
) -> NormalizedRequest:
    """Rewrite *request* to fit what *capabilities* supports.

    Identity for fully capable models. Never mutates the input; returns a
    new request value.
    """
    check_conflicting_options(request, capabilities)
    if not capabilities.is_reduced:
        return NormalizedRequest(request=request)

    update: dict[str, object] = {}
    messages = list(request.messages)
    tools_emulated = False

    if not capabilities.system_role:
        messages = [
            m if m.role == "user" else m.model_copy(update={"role": "user"})
            for m in messages
        ]

    if not capabilities.sampling_params:
        update.update(
            temperature=None,
            top_p=None,
            frequency_penalty=None,
            presence_penalty=None,
            tool_choice=None,
        )

    if not capabilities.native_tools and request.tools:
        messages.append(ChatMessage(role="user", content=build_tool_instruction(request.tools)))
        update["tools"] = None
        update["tool_choice"] = None
        tools_emulated = True

    if not capabilities.structured_output and request.response_schema is not None:
        # The output-format instruction must be the final turn.
        if request.image is not None:
            messages.append(request.image.to_message())
            update["image"] = None
        messages.append(
            ChatMessage(role="user", content=build_schema_instruction(request.response_schema))
        )

    update["messages"] = tuple(messages)
    logger.debug(
        "Normalized request for %s (tools_emulated=%s, messages=%d)",
        request.model,
        tools_emulated,
        len(messages),
    )
    return NormalizedRequest(request=request.model_copy(update=update), tools_emulated=tools_emulated)
