"""Parse and validate structured model output.

Used by the gateway when a response schema was requested. Parse failures and
validation failures raise distinct errors; both are retried by the gateway.
"""

from __future__ import annotations

import json as _json
import logging
import re
from typing import Any

from llm_gateway.errors import SchemaParseError, SchemaValidationError
from llm_gateway.schema import SchemaCapability, schema_errors
from llm_gateway.types import ResponseSchema

logger = logging.getLogger(__name__)


def strip_fences(content: str) -> str:
    """Strip markdown code fences from model output."""
    content = content.strip()
    content = re.sub(r"^```(?:json|JSON)?\s*\n?", "", content)
    content = re.sub(r"\n?\s*```\s*$", "", content)
    return content.strip()


def build_schema_instruction(response_schema: ResponseSchema) -> str:
    """Text instruction asking a model without structured-output mode for bare JSON."""
    try:
        portable = _json.dumps(response_schema.schema.to_portable_schema())
    except Exception as e:
        raise SchemaParseError(
            f"Could not render schema {response_schema.name!r}: {e}",
            original=e,
        ) from e
    return (
        f"Respond in this JSON schema format:\n{portable}\n\n"
        "Do not include any other text, formatting or markdown in your output. "
        "Do not include ``` or ```json in your response. Only the JSON object itself."
    )


def parse_structured_content(content: str | None) -> Any:
    """Parse reply text as JSON. Raises SchemaParseError."""
    if content is None or not content.strip():
        raise SchemaParseError("Empty content from model", content=content)
    cleaned = strip_fences(content)
    try:
        return _json.loads(cleaned)
    except _json.JSONDecodeError as e:
        raise SchemaParseError(
            f"Model output is not valid JSON: {e}",
            content=content,
            original=e,
        ) from e


def validate_structured(schema: SchemaCapability, data: Any) -> Any:
    """Return *data* if the schema accepts it. Raises SchemaValidationError."""
    if schema.validate(data):
        return data
    errors = schema_errors(schema)
    detail = "; ".join(errors[:5]) if errors else "schema rejected the output"
    raise SchemaValidationError(f"Invalid response schema: {detail}", data=data, errors=errors)
