"""Model capability table.

Maps a model identifier to the request features it supports natively. The
normalizer consults this once per attempt instead of branching on model
strings. Unknown models are assumed to support everything.

Usage::

    from llm_gateway import get_capabilities

    caps = get_capabilities("o1-mini")
    caps.native_tools        # False -> tool calling is emulated in text
    caps.is_reduced          # True

Override the built-in table with a YAML file (``LLM_GATEWAY_CAPABILITIES`` or
``~/.config/llm_gateway/capabilities.yaml``)::

    models:
      - model: my-local-model
        system_role: false
        native_tools: false
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

CAPABILITIES_ENV = "LLM_GATEWAY_CAPABILITIES"


class ModelCapabilities(BaseModel):
    """What a model accepts without rewriting."""

    model: str
    system_role: bool = True
    sampling_params: bool = True
    native_tools: bool = True
    structured_output: bool = True

    @property
    def is_reduced(self) -> bool:
        return not (
            self.system_role and self.sampling_params and self.native_tools and self.structured_output
        )


# ---------------------------------------------------------------------------
# Default table (embedded, no external file needed)
# ---------------------------------------------------------------------------

_REDUCED_O1: dict[str, Any] = {
    "system_role": False,
    "sampling_params": False,
    "native_tools": False,
    "structured_output": False,
}

_DEFAULT_CAPABILITIES: list[dict[str, Any]] = [
    {"model": "o1-mini", **_REDUCED_O1},
    {"model": "o1-preview", **_REDUCED_O1},
]


# ---------------------------------------------------------------------------
# Config loading (lazy, cached)
# ---------------------------------------------------------------------------

_table_cache: dict[str, ModelCapabilities] | None = None


def _load_table() -> dict[str, ModelCapabilities]:
    """Load the table with fallback chain: env var → user file → built-in defaults."""
    global _table_cache  # noqa: PLW0603
    if _table_cache is not None:
        return _table_cache

    entries: list[dict[str, Any]] = list(_DEFAULT_CAPABILITIES)

    env_path = os.environ.get(CAPABILITIES_ENV)
    if env_path:
        p = Path(env_path)
        if not p.is_file():
            raise RuntimeError(f"{CAPABILITIES_ENV} points to non-existent file: {p}")
        entries = _merge(entries, _load_yaml_file(p))
        logger.debug("Loaded capability table from %s (env var)", p)
    else:
        user_path = Path.home() / ".config" / "llm_gateway" / "capabilities.yaml"
        if user_path.is_file():
            entries = _merge(entries, _load_yaml_file(user_path))
            logger.debug("Loaded capability table from %s", user_path)

    _table_cache = {e["model"]: ModelCapabilities(**e) for e in entries}
    return _table_cache


def _load_yaml_file(path: Path) -> list[dict[str, Any]]:
    import yaml  # type: ignore[import-untyped]  # lazy import, only needed if user has a config file

    raw = yaml.safe_load(path.read_text())
    if not isinstance(raw, dict) or not isinstance(raw.get("models"), list):
        raise RuntimeError(f"Invalid capability file {path}: expected a 'models' list")
    for entry in raw["models"]:
        if not isinstance(entry, dict) or not entry.get("model"):
            raise RuntimeError(f"Invalid capability entry in {path}: {entry!r}")
    return raw["models"]


def _merge(base: list[dict[str, Any]], overrides: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """User entries replace built-in entries with the same model id."""
    by_model = {e["model"]: e for e in base}
    for entry in overrides:
        by_model[entry["model"]] = entry
    return list(by_model.values())


def _reset_table() -> None:
    """Reset cached table. For testing only."""
    global _table_cache  # noqa: PLW0603
    _table_cache = None


# ---------------------------------------------------------------------------
# Core API
# ---------------------------------------------------------------------------


def get_capabilities(model: str) -> ModelCapabilities:
    """Capability descriptor for *model*.

    Matches the exact id first, then the id without its provider prefix
    (``openai/o1-mini`` → ``o1-mini``). Unknown models get full capability.
    """
    table = _load_table()
    if model in table:
        return table[model]
    base = model.rsplit("/", 1)[-1]
    if base in table:
        return table[base].model_copy(update={"model": model})
    return ModelCapabilities(model=model)


def list_capabilities() -> list[ModelCapabilities]:
    """All models with an explicit entry in the table."""
    return sorted(_load_table().values(), key=lambda c: c.model)
