"""Typed runtime configuration for llm_gateway."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CACHE_ENV = "LLM_GATEWAY_CACHE"
CACHE_DIR_ENV = "LLM_GATEWAY_CACHE_DIR"
MAX_RETRIES_ENV = "LLM_GATEWAY_MAX_RETRIES"
TIMEOUT_ENV = "LLM_GATEWAY_TIMEOUT"
API_BASE_ENV = "LLM_GATEWAY_API_BASE"

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT = 60

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class GatewayConfig:
    """Runtime policy/config resolved once and passed explicitly to the gateway."""

    enable_caching: bool = False
    cache_dir: Path | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout: int = DEFAULT_TIMEOUT
    api_base: str | None = None

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Build typed config from environment variables."""
        cache_raw = os.environ.get(CACHE_ENV, "off").strip().lower()
        if cache_raw in _TRUE:
            enable_caching = True
        elif cache_raw in _FALSE:
            enable_caching = False
        else:
            logger.warning(
                "Invalid %s=%r; expected on/off boolean. Defaulting to off.",
                CACHE_ENV,
                cache_raw,
            )
            enable_caching = False

        cache_dir_raw = os.environ.get(CACHE_DIR_ENV, "").strip()
        cache_dir = Path(cache_dir_raw).expanduser() if cache_dir_raw else None

        return cls(
            enable_caching=enable_caching,
            cache_dir=cache_dir,
            max_retries=_int_env(MAX_RETRIES_ENV, DEFAULT_MAX_RETRIES),
            timeout=_int_env(TIMEOUT_ENV, DEFAULT_TIMEOUT),
            api_base=os.environ.get(API_BASE_ENV) or None,
        )


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if value < 0:
        logger.warning("Invalid %s=%r; expected a non-negative integer. Defaulting to %d.", name, raw, default)
        return default
    return value
