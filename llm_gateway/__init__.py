"""Unified model-completion gateway on top of litellm.

One entry point for every model variant: quirky models get their requests
rewritten, replies are cached by request fingerprint, and structured output
is parsed, validated and retried until it matches the schema.

Usage:
    from llm_gateway import CompletionGateway, CompletionRequest, PydanticSchema, ResponseSchema

    gateway = CompletionGateway(enable_caching=True)

    # Raw reply
    reply = await gateway.create_chat_completion(
        CompletionRequest(model="gpt-4o", messages=[{"role": "user", "content": "Hello"}]),
    )
    print(reply.content)

    # Structured output, validated (and retried) against a pydantic model
    data = await gateway.create_chat_completion(
        CompletionRequest(
            model="o1-mini",
            messages=[{"role": "user", "content": "Extract the press release titles"}],
            response_schema=ResponseSchema(schema=PydanticSchema(Releases), name="releases"),
        ),
        retries_remaining=3,
    )
"""

from llm_gateway.cache import (
    CacheStore,
    FileCacheStore,
    InMemoryCacheStore,
    fingerprint,
    fingerprint_payload,
)
from llm_gateway.capabilities import ModelCapabilities, get_capabilities, list_capabilities
from llm_gateway.config import GatewayConfig
from llm_gateway.dispatcher import Dispatcher, LiteLLMDispatcher, build_output_directive
from llm_gateway.errors import (
    ConflictingOptionsError,
    GatewayError,
    SchemaParseError,
    SchemaValidationError,
    ToolCallParseError,
    TransportAuthError,
    TransportBadRequestError,
    TransportError,
    TransportRateLimitError,
    TransportTimeoutError,
    TransportUnavailableError,
)
from llm_gateway.gateway import CompletionGateway, Hooks
from llm_gateway.log import LogFn, LogLine
from llm_gateway.normalizer import NormalizedRequest, normalize_request
from llm_gateway.schema import JsonSchema, PydanticSchema, SchemaCapability
from llm_gateway.structured import strip_fences
from llm_gateway.tool_shim import reconstruct_tool_call
from llm_gateway.types import (
    ChatMessage,
    CompletionReply,
    CompletionRequest,
    CompletionResult,
    ImageAttachment,
    ReplyChoice,
    ReplyMessage,
    ResponseSchema,
    ToolInvocationRecord,
)

__all__ = [
    "CacheStore",
    "ChatMessage",
    "CompletionGateway",
    "CompletionReply",
    "CompletionRequest",
    "CompletionResult",
    "ConflictingOptionsError",
    "Dispatcher",
    "FileCacheStore",
    "GatewayConfig",
    "GatewayError",
    "Hooks",
    "ImageAttachment",
    "InMemoryCacheStore",
    "JsonSchema",
    "LiteLLMDispatcher",
    "LogFn",
    "LogLine",
    "ModelCapabilities",
    "NormalizedRequest",
    "PydanticSchema",
    "ReplyChoice",
    "ReplyMessage",
    "ResponseSchema",
    "SchemaCapability",
    "SchemaParseError",
    "SchemaValidationError",
    "ToolCallParseError",
    "ToolInvocationRecord",
    "TransportAuthError",
    "TransportBadRequestError",
    "TransportError",
    "TransportRateLimitError",
    "TransportTimeoutError",
    "TransportUnavailableError",
    "build_output_directive",
    "fingerprint",
    "fingerprint_payload",
    "get_capabilities",
    "list_capabilities",
    "normalize_request",
    "reconstruct_tool_call",
    "strip_fences",
]
