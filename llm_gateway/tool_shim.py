"""Text-emulated tool calling for models without native tool support.

Models like o1-mini reject ``tools=``. The normalizer appends the tool
definitions as a user message asking for a bare JSON reply
``{"name": ..., "arguments": ...}``; after dispatch this module turns that
reply back into a regular tool call so callers cannot tell native and
emulated tool calling apart.
"""

from __future__ import annotations

import json as _json
import logging
from typing import Any, Sequence

from llm_gateway.errors import ToolCallParseError
from llm_gateway.types import CompletionReply, ToolFunction, ToolInvocationRecord

logger = logging.getLogger(__name__)

# No provider id exists for a reconstructed call.
EMULATED_CALL_ID = "-1"


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------


def _extract_first_json_object(text: str) -> dict[str, Any] | None:
    """Extract the first valid JSON object from text that may have trailing garbage."""
    start = text.find("{")
    if start == -1:
        return None
    decoder = _json.JSONDecoder()
    try:
        obj, _ = decoder.raw_decode(text, start)
        if isinstance(obj, dict):
            return obj
    except _json.JSONDecodeError:
        pass
    return None


# ---------------------------------------------------------------------------
# Instruction generation
# ---------------------------------------------------------------------------


def build_tool_instruction(tools: Sequence[dict[str, Any]]) -> str:
    """Build the user message that describes available tools and the reply shape."""
    return "\n".join([
        "You have the following tools available to you:",
        _json.dumps(list(tools)),
        "",
        "Respond with the following JSON format to use a tool:",
        '{"name": "<tool_name>", "arguments": <tool_args>}',
        "",
        "Do not include any other text or formatting like ``` in your response. "
        "Just the JSON object.",
    ])


# ---------------------------------------------------------------------------
# Reconstruction
# ---------------------------------------------------------------------------


def _parse_tool_json(content: str) -> dict[str, Any]:
    raw = content.strip()
    try:
        parsed = _json.loads(raw)
    except _json.JSONDecodeError as e:
        # Model may emit valid JSON followed by trailing garbage.
        recovered = _extract_first_json_object(raw)
        if recovered is None:
            raise ToolCallParseError(
                f"Tool call reply is not valid JSON: {e}",
                content=content,
                original=e,
            ) from e
        logger.info("Recovered tool call JSON from reply with trailing text")
        parsed = recovered
    if not isinstance(parsed, dict):
        raise ToolCallParseError(
            f"Tool call reply must be a JSON object, got {type(parsed).__name__}",
            content=content,
        )
    return parsed


def reconstruct_tool_call(reply: CompletionReply) -> CompletionReply:
    """Rewrite a text tool-call reply into a reply carrying one tool call.

    Returns a new reply: the primary message gets exactly one
    ToolInvocationRecord and its text content is cleared.
    Raises ToolCallParseError when the text isn't ``{name, arguments}`` JSON.
    """
    if not reply.choices:
        raise ToolCallParseError("Reply has no choices to reconstruct a tool call from")
    content = reply.choices[0].message.content
    if content is None or not content.strip():
        raise ToolCallParseError("Empty tool call reply", content=content)

    parsed = _parse_tool_json(content)
    name = parsed.get("name")
    if not isinstance(name, str) or not name:
        raise ToolCallParseError("Tool call reply is missing a string 'name'", content=content)

    arguments = parsed.get("arguments", {})
    if arguments is None:
        arguments = {}
    if isinstance(arguments, str):
        arguments_json = arguments
    else:
        arguments_json = _json.dumps(arguments, separators=(",", ":"))

    record = ToolInvocationRecord(
        id=EMULATED_CALL_ID,
        function=ToolFunction(name=name, arguments=arguments_json),
    )
    primary = reply.choices[0]
    new_primary = primary.model_copy(update={
        "message": primary.message.model_copy(update={"content": None, "tool_calls": [record]}),
        "finish_reason": "tool_calls",
    })
    logger.debug("Reconstructed emulated tool call %s", name)
    return reply.model_copy(update={"choices": [new_primary, *reply.choices[1:]]})
