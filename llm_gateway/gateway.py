"""Completion gateway: one entry point for every model variant.

``CompletionGateway.create_chat_completion`` runs each attempt as

    cache check → normalize → dispatch → (validate | reconstruct tool call) → cache write

and re-runs the whole attempt, cache check included, when the model's output
is malformed and retry budget remains. Transport failures and conflicting
request options are raised immediately.

Usage::

    gateway = CompletionGateway(enable_caching=True)
    reply = await gateway.create_chat_completion(
        CompletionRequest(model="gpt-4o", messages=[{"role": "user", "content": "Hi"}]),
    )
    print(reply.content)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from llm_gateway.cache import (
    FileCacheStore,
    InMemoryCacheStore,
    cache_get,
    cache_set,
    detach_entry,
    fingerprint,
)
from llm_gateway.capabilities import ModelCapabilities, get_capabilities
from llm_gateway.config import GatewayConfig
from llm_gateway.dispatcher import Dispatcher, LiteLLMDispatcher, build_output_directive
from llm_gateway.errors import RETRYABLE_ERRORS, ToolCallParseError
from llm_gateway.log import LogFn, emit, stdlib_log_sink
from llm_gateway.normalizer import check_conflicting_options, normalize_request
from llm_gateway.structured import parse_structured_content, validate_structured
from llm_gateway.tool_shim import reconstruct_tool_call
from llm_gateway.types import CompletionReply, CompletionRequest, CompletionResult

logger = logging.getLogger(__name__)


@dataclass
class Hooks:
    """Observability hooks fired during gateway calls.

    All fields are optional. Hooks observe; they never change the outcome.

    Attributes:
        before_dispatch: ``(request, attempt) → None``. Fired with the
            normalized request before each provider call.
        after_dispatch: ``(reply, attempt) → None``. Fired with the raw
            provider reply, before validation or tool-call reconstruction.
        on_error: ``(error, attempt) → None``. Fired on each failed attempt,
            whatever the exception type; the exception still propagates.
    """

    before_dispatch: Callable[[CompletionRequest, int], None] | None = None
    after_dispatch: Callable[[CompletionReply, int], None] | None = None
    on_error: Callable[[Exception, int], None] | None = None


class CompletionGateway:
    """Schema-validating, caching front for chat completions.

    Args:
        dispatcher: Provider transport. Defaults to ``LiteLLMDispatcher``.
        cache: Cache store. Defaults to a file store when ``config.cache_dir``
            is set, else an in-memory store (only used when caching is on).
        enable_caching: Overrides ``config.enable_caching``.
        log: Receives a ``LogLine`` per event. Defaults to stdlib logging.
        request_id: Trace id attached to log lines and cache entries.
        config: Runtime config. Defaults to ``GatewayConfig.from_env()``.
        hooks: Observability hooks.
    """

    def __init__(
        self,
        *,
        dispatcher: Dispatcher | None = None,
        cache: Any = None,
        enable_caching: bool | None = None,
        log: LogFn | None = None,
        request_id: str | None = None,
        config: GatewayConfig | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        self.config = config or GatewayConfig.from_env()
        self.dispatcher: Dispatcher = dispatcher or LiteLLMDispatcher(
            timeout=self.config.timeout,
            api_base=self.config.api_base,
        )
        self.enable_caching = self.config.enable_caching if enable_caching is None else enable_caching
        if cache is None and self.enable_caching:
            if self.config.cache_dir is not None:
                cache = FileCacheStore(self.config.cache_dir)
            else:
                cache = InMemoryCacheStore()
        self.cache = cache
        self.log: LogFn = log or stdlib_log_sink
        self.request_id = request_id or uuid.uuid4().hex
        self.hooks = hooks
        self._pending_writes: set[asyncio.Task[None]] = set()

    # -- public API -------------------------------------------------------

    async def create_chat_completion(
        self,
        request: CompletionRequest,
        retries_remaining: int | None = None,
    ) -> CompletionResult:
        """Run *request* and return the reply envelope or the validated object.

        Args:
            request: The completion request. Never mutated.
            retries_remaining: Extra attempts allowed when the model's output
                fails to parse or validate. Defaults to ``config.max_retries``.

        Returns:
            ``CompletionReply`` when no response schema was requested, else the
            parsed and validated JSON object. The caller owns the value: edits
            to it never reach the cache.

        Raises:
            ConflictingOptionsError: tools + response schema on a model
                without native tools. Raised before any cache or provider call.
            TransportError: the provider call failed (not retried).
            SchemaParseError, SchemaValidationError, ToolCallParseError: the
                last failure once the retry budget is spent.
        """
        budget = self.config.max_retries if retries_remaining is None else retries_remaining
        if budget < 0:
            raise ValueError(f"retries_remaining must be >= 0, got {budget}")

        capabilities = get_capabilities(request.model)
        check_conflicting_options(request, capabilities)

        attempt = 0
        while True:
            try:
                return await self._attempt(request, capabilities, attempt)
            except RETRYABLE_ERRORS as e:
                if self.hooks and self.hooks.on_error:
                    self.hooks.on_error(e, attempt)
                if budget <= 0:
                    emit(
                        self.log, "llm_gateway",
                        "giving up after invalid model output",
                        level=0,
                        error=str(e),
                        attempts=attempt + 1,
                        requestId=self.request_id,
                    )
                    raise
                budget -= 1
                attempt += 1
                emit(
                    self.log, "llm_gateway",
                    "invalid model output, retrying",
                    level=1,
                    error=str(e),
                    retriesRemaining=budget,
                    requestId=self.request_id,
                )
            except Exception as e:
                if self.hooks and self.hooks.on_error:
                    self.hooks.on_error(e, attempt)
                raise

    def create_chat_completion_sync(
        self,
        request: CompletionRequest,
        retries_remaining: int | None = None,
    ) -> CompletionResult:
        """Sync version of create_chat_completion. Waits for cache writes before returning."""

        async def _run() -> CompletionResult:
            try:
                return await self.create_chat_completion(request, retries_remaining)
            finally:
                await self.flush_cache_writes()

        return _run_sync(_run())

    async def flush_cache_writes(self) -> None:
        """Wait for cache writes scheduled by earlier calls."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    # -- one attempt --------------------------------------------------------

    async def _attempt(
        self,
        request: CompletionRequest,
        capabilities: ModelCapabilities,
        attempt: int,
    ) -> CompletionResult:
        key: str | None = None
        if self.enable_caching and self.cache is not None:
            key = fingerprint(request)
            cached = await cache_get(self.cache, key, self.request_id)
            if cached is not None:
                emit(
                    self.log, "llm_cache",
                    "LLM cache hit - returning cached response",
                    requestId=self.request_id,
                    fingerprint=key,
                )
                return detach_entry(cached)
            emit(
                self.log, "llm_cache",
                "LLM cache miss - no cached response found",
                requestId=self.request_id,
                fingerprint=key,
            )

        normalized = normalize_request(request, capabilities)
        outgoing = normalized.request
        response_schema = request.response_schema

        directive = None
        if response_schema is not None and capabilities.structured_output:
            directive = build_output_directive(response_schema)

        emit(
            self.log, "llm_gateway",
            "creating chat completion",
            options=outgoing.model_dump(mode="json", exclude={"image", "response_schema"}),
            responseSchema=response_schema.name if response_schema else None,
            toolsEmulated=normalized.tools_emulated,
            attempt=attempt,
            requestId=self.request_id,
        )
        if self.hooks and self.hooks.before_dispatch:
            self.hooks.before_dispatch(outgoing, attempt)

        reply = await self.dispatcher.dispatch(outgoing, directive)

        if self.hooks and self.hooks.after_dispatch:
            self.hooks.after_dispatch(reply, attempt)

        if normalized.tools_emulated:
            try:
                reply = reconstruct_tool_call(reply)
            except ToolCallParseError as e:
                emit(
                    self.log, "llm_gateway",
                    "Failed to parse tool call response",
                    level=0,
                    error=str(e),
                    content=e.content,
                    requestId=self.request_id,
                )
                raise

        emit(
            self.log, "llm_gateway",
            "response",
            level=2,
            response=reply,
            requestId=self.request_id,
        )

        if response_schema is not None:
            try:
                data = parse_structured_content(reply.content)
                data = validate_structured(response_schema.schema, data)
            except RETRYABLE_ERRORS as e:
                emit(
                    self.log, "llm_gateway",
                    "response failed schema validation",
                    level=0,
                    error=str(e),
                    schema=response_schema.name,
                    requestId=self.request_id,
                )
                raise
            if key is not None:
                self._schedule_cache_write(key, detach_entry(data))
            return data

        if key is not None:
            self._schedule_cache_write(key, detach_entry(reply))
        return reply

    # -- cache writes ---------------------------------------------------------

    def _schedule_cache_write(self, key: str, entry: CompletionResult) -> None:
        """Fire-and-forget write; the caller's result never waits on it."""
        task = asyncio.get_running_loop().create_task(self._write_cache(key, entry))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_cache(self, key: str, entry: CompletionResult) -> None:
        emit(
            self.log, "llm_cache",
            "caching response",
            requestId=self.request_id,
            fingerprint=key,
        )
        try:
            await cache_set(self.cache, key, entry, self.request_id)
        except Exception as e:
            emit(
                self.log, "llm_cache",
                "failed to write response to cache",
                level=0,
                error=f"{type(e).__name__}: {e}",
                requestId=self.request_id,
                fingerprint=key,
            )
            logger.debug("cache write failed", exc_info=True)


def _run_sync(coro: Any) -> Any:
    """Run a coroutine synchronously, handling nested event loops."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None and loop.is_running():
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)
