"""Response cache: request fingerprints and cache stores.

The gateway keys cache entries by a fingerprint of the caller's request
(before quirk normalization). Only fields that change the model's answer
take part; ``tools``/``tool_choice`` and retry bookkeeping do not.

Stores implement ``get(fingerprint, trace_id)`` / ``set(fingerprint, entry,
trace_id)``, either sync or async. Two backends ship:

- ``InMemoryCacheStore``: thread-safe LRU with optional TTL
- ``FileCacheStore``: one JSON file per fingerprint, survives restarts
"""

from __future__ import annotations

import asyncio
import base64
import copy
import hashlib
import inspect
import json as _json
import logging
import os
import tempfile
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from llm_gateway.types import CompletionReply, CompletionRequest, CompletionResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------


def _portable_schema_or_repr(request: CompletionRequest) -> Any:
    rs = request.response_schema
    if rs is None:
        return None
    try:
        schema: Any = rs.schema.to_portable_schema()
    except Exception:
        logger.debug("Schema %r has no portable form; fingerprinting its repr", rs.schema, exc_info=True)
        schema = repr(rs.schema)
    return {"name": rs.name, "schema": schema}


def fingerprint_payload(request: CompletionRequest) -> dict[str, Any]:
    """Cache-relevant subset of *request* as plain JSON data."""
    image = None
    if request.image is not None:
        image = {
            "buffer": base64.b64encode(request.image.buffer).decode("ascii"),
            "description": request.image.description,
        }
    return {
        "model": request.model,
        "messages": [m.model_dump(mode="json") for m in request.messages],
        "temperature": request.temperature,
        "top_p": request.top_p,
        "frequency_penalty": request.frequency_penalty,
        "presence_penalty": request.presence_penalty,
        "image": image,
        "response_schema": _portable_schema_or_repr(request),
    }


def fingerprint(request: CompletionRequest) -> str:
    """Deterministic cache key for *request*."""
    key_data = _json.dumps(fingerprint_payload(request), sort_keys=True, default=str)
    return hashlib.sha256(key_data.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class CacheStore(Protocol):
    """Protocol for gateway cache backends (Redis, disk, memory...).

    Sync implementations are accepted too; the gateway awaits only when a
    call returns an awaitable.
    """

    async def get(self, fingerprint: str, trace_id: str) -> CompletionResult | None: ...
    async def set(self, fingerprint: str, entry: CompletionResult, trace_id: str) -> None: ...


def detach_entry(entry: CompletionResult) -> CompletionResult:
    """Deep copy of a cache entry, so callers and the store never share objects."""
    if isinstance(entry, CompletionReply):
        return entry.model_copy(deep=True)
    return copy.deepcopy(entry)


async def cache_get(store: Any, key: str, trace_id: str) -> CompletionResult | None:
    """Get from cache, awaiting if the store is async."""
    result = store.get(key, trace_id)
    if inspect.isawaitable(result):
        return await result
    return result  # type: ignore[return-value]


async def cache_set(store: Any, key: str, entry: CompletionResult, trace_id: str) -> None:
    """Set into cache, awaiting if the store is async."""
    result = store.set(key, entry, trace_id)
    if inspect.isawaitable(result):
        await result


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryCacheStore:
    """Thread-safe in-memory LRU cache for gateway results.

    Entries are copied on the way in and on the way out.

    Args:
        maxsize: Maximum number of entries. Oldest evicted on overflow.
        ttl: Time-to-live in seconds. ``None`` means entries never expire.
    """

    def __init__(self, maxsize: int = 512, ttl: float | None = None) -> None:
        self._cache: OrderedDict[str, tuple[CompletionResult, float, str]] = OrderedDict()
        self._maxsize = maxsize
        self._ttl = ttl
        self._lock = threading.Lock()

    async def get(self, fingerprint: str, trace_id: str) -> CompletionResult | None:
        with self._lock:
            if fingerprint not in self._cache:
                return None
            value, ts, _ = self._cache[fingerprint]
            if self._ttl is not None and time.monotonic() - ts > self._ttl:
                del self._cache[fingerprint]
                return None
            self._cache.move_to_end(fingerprint)
            return detach_entry(value)

    async def set(self, fingerprint: str, entry: CompletionResult, trace_id: str) -> None:
        with self._lock:
            self._cache[fingerprint] = (detach_entry(entry), time.monotonic(), trace_id)
            self._cache.move_to_end(fingerprint)
            if len(self._cache) > self._maxsize:
                self._cache.popitem(last=False)

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            return fingerprint in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


# ---------------------------------------------------------------------------
# File store
# ---------------------------------------------------------------------------


class FileCacheStore:
    """Disk cache: one JSON document per fingerprint under *directory*.

    Writes go to a temp file and are moved into place, so concurrent writers
    never leave a half-written entry (last writer wins). Unreadable entries
    are treated as misses.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, fingerprint: str) -> Path:
        return self.directory / f"{fingerprint}.json"

    async def get(self, fingerprint: str, trace_id: str) -> CompletionResult | None:
        return await asyncio.to_thread(self._read, fingerprint)

    async def set(self, fingerprint: str, entry: CompletionResult, trace_id: str) -> None:
        await asyncio.to_thread(self._write, fingerprint, entry, trace_id)

    def _read(self, fingerprint: str) -> CompletionResult | None:
        path = self._path(fingerprint)
        if not path.is_file():
            return None
        try:
            doc = _json.loads(path.read_text())
            if doc.get("kind") == "reply":
                return CompletionReply.model_validate(doc["value"])
            return doc["value"]
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("Ignoring unreadable cache entry %s", path, exc_info=True)
            return None

    def _write(self, fingerprint: str, entry: CompletionResult, trace_id: str) -> None:
        if isinstance(entry, CompletionReply):
            doc = {"kind": "reply", "value": entry.model_dump(mode="json")}
        else:
            doc = {"kind": "structured", "value": entry}
        doc["trace_id"] = trace_id
        doc["created_at"] = time.time()
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                _json.dump(doc, f)
            os.replace(tmp, self._path(fingerprint))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
