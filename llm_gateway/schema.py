"""Schema capabilities: validate model output and describe its expected shape.

A schema capability is anything with ``validate(data) -> bool`` and
``to_portable_schema() -> dict``. Two implementations ship:

- ``PydanticSchema`` wraps a pydantic model class
- ``JsonSchema`` wraps a plain JSON Schema dict (validated with ``jsonschema``)

Usage::

    class Item(BaseModel):
        name: str
        price: float

    request = CompletionRequest(
        model="gpt-4o",
        messages=[{"role": "user", "content": "Extract the item"}],
        response_schema=ResponseSchema(schema=PydanticSchema(Item), name="item"),
    )
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


@runtime_checkable
class SchemaCapability(Protocol):
    """Caller-supplied structural validator/describer for expected output shape."""

    def validate(self, data: Any) -> bool: ...
    def to_portable_schema(self) -> dict[str, Any]: ...


class PydanticSchema:
    """Schema capability backed by a pydantic model class."""

    def __init__(self, model: type[BaseModel]) -> None:
        self.model = model
        self.last_errors: list[str] = []

    def validate(self, data: Any) -> bool:
        try:
            self.model.model_validate(data)
        except ValidationError as e:
            self.last_errors = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            return False
        self.last_errors = []
        return True

    def to_portable_schema(self) -> dict[str, Any]:
        return self.model.model_json_schema()

    def parse(self, data: Any) -> BaseModel:
        """Build the model instance from already-validated data."""
        return self.model.model_validate(data)

    def __repr__(self) -> str:
        return f"PydanticSchema({self.model.__module__}.{self.model.__qualname__})"


class JsonSchema:
    """Schema capability backed by a JSON Schema document."""

    def __init__(self, schema: dict[str, Any]) -> None:
        import jsonschema

        jsonschema.validators.validator_for(schema).check_schema(schema)
        self.schema = schema
        self.last_errors: list[str] = []

    def validate(self, data: Any) -> bool:
        import jsonschema

        validator_cls = jsonschema.validators.validator_for(self.schema)
        errors = sorted(validator_cls(self.schema).iter_errors(data), key=lambda e: list(e.path))
        self.last_errors = [
            f"{'.'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors
        ]
        return not errors

    def to_portable_schema(self) -> dict[str, Any]:
        return copy.deepcopy(self.schema)

    def __repr__(self) -> str:
        return f"JsonSchema(title={self.schema.get('title')!r})"


def schema_errors(schema: SchemaCapability) -> list[str]:
    """Best-effort detail for the last failed ``validate`` call."""
    errors = getattr(schema, "last_errors", None)
    if isinstance(errors, list):
        return [str(e) for e in errors]
    return []
