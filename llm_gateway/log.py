"""Structured log lines emitted by the gateway.

Every cache event, dispatch and failure is reported as a ``LogLine`` to a
caller-supplied callable. Without one, lines go to the stdlib ``logging``
logger of this package. Logging is observational only: a sink that raises
never changes the outcome of a call.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger("llm_gateway")

LogLevel = Literal[0, 1, 2]

# 0 = error, 1 = info, 2 = verbose
_STDLIB_LEVELS: dict[int, int] = {
    0: logging.ERROR,
    1: logging.INFO,
    2: logging.DEBUG,
}


class AuxiliaryValue(BaseModel):
    value: str
    type: Literal["string", "integer", "float", "boolean", "object"] = "string"


class LogLine(BaseModel):
    category: str
    message: str
    level: LogLevel = 1
    auxiliary: dict[str, AuxiliaryValue] = Field(default_factory=dict)


LogFn = Callable[[LogLine], None]


def aux(value: Any) -> AuxiliaryValue:
    """Wrap a value for ``LogLine.auxiliary``, JSON-encoding non-scalars."""
    if isinstance(value, bool):
        return AuxiliaryValue(value=str(value).lower(), type="boolean")
    if isinstance(value, int):
        return AuxiliaryValue(value=str(value), type="integer")
    if isinstance(value, float):
        return AuxiliaryValue(value=str(value), type="float")
    if isinstance(value, str):
        return AuxiliaryValue(value=value, type="string")
    if isinstance(value, BaseModel):
        return AuxiliaryValue(value=value.model_dump_json(), type="object")
    return AuxiliaryValue(value=json.dumps(value, default=str), type="object")


def stdlib_log_sink(line: LogLine) -> None:
    """Default sink: forward to the ``llm_gateway`` stdlib logger."""
    level = _STDLIB_LEVELS.get(line.level, logging.INFO)
    if not logger.isEnabledFor(level):
        return
    if line.auxiliary:
        extras = " ".join(f"{k}={v.value}" for k, v in line.auxiliary.items())
        logger.log(level, "[%s] %s %s", line.category, line.message, extras)
    else:
        logger.log(level, "[%s] %s", line.category, line.message)


def emit(
    sink: LogFn,
    category: str,
    message: str,
    level: LogLevel = 1,
    **auxiliary: Any,
) -> None:
    """Build a LogLine and hand it to *sink*. Sink failures are logged, not raised."""
    line = LogLine(
        category=category,
        message=message,
        level=level,
        auxiliary={k: aux(v) for k, v in auxiliary.items() if v is not None},
    )
    try:
        sink(line)
    except Exception:
        logger.warning("log sink failed for %s: %s", category, message, exc_info=True)
