"""Request and reply data model.

Requests are frozen pydantic models: every transform (quirk normalization,
appended instructions, stripped fields) returns a new value via
``model_copy(update=...)`` so retries never see a previous attempt's edits.
"""

from __future__ import annotations

import base64
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from llm_gateway.schema import SchemaCapability

Role = Literal["system", "user", "assistant"]


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    """One conversation turn. ``content`` is text or a list of typed parts."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Union[str, list[dict[str, Any]]]


class ImageAttachment(BaseModel):
    """Screenshot or other image sent alongside the conversation."""

    model_config = ConfigDict(frozen=True)

    buffer: bytes
    description: str | None = None

    def to_message(self) -> ChatMessage:
        """User turn carrying the image as a base64 data URL, then its description."""
        encoded = base64.b64encode(self.buffer).decode("ascii")
        parts: list[dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{encoded}"}},
        ]
        if self.description:
            parts.append({"type": "text", "text": self.description})
        return ChatMessage(role="user", content=parts)


class ResponseSchema(BaseModel):
    """Expected output shape plus the name used for provider-side schemas."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_: Any = Field(alias="schema")
    name: str

    @field_validator("schema_")
    @classmethod
    def _check_capability(cls, value: Any) -> Any:
        if not isinstance(value, SchemaCapability):
            raise ValueError(
                "schema must provide validate(data) and to_portable_schema(), "
                f"got {type(value).__name__}"
            )
        return value

    @property
    def schema(self) -> SchemaCapability:  # type: ignore[override]
        return self.schema_


class CompletionRequest(BaseModel):
    """A completion request as authored by the caller."""

    model_config = ConfigDict(frozen=True)

    model: str
    messages: tuple[ChatMessage, ...]
    temperature: float | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    max_tokens: int | None = None
    image: ImageAttachment | None = None
    response_schema: ResponseSchema | None = None
    tools: tuple[dict[str, Any], ...] | None = None
    tool_choice: str | dict[str, Any] | None = None

    def with_messages(self, *extra: ChatMessage) -> CompletionRequest:
        """Return a copy with *extra* appended to the conversation."""
        return self.model_copy(update={"messages": (*self.messages, *extra)})


# ---------------------------------------------------------------------------
# Reply
# ---------------------------------------------------------------------------


class ToolFunction(BaseModel):
    name: str
    arguments: str


class ToolInvocationRecord(BaseModel):
    """Canonical tool call, identical whether native or reconstructed from text."""

    id: str
    type: Literal["function"] = "function"
    function: ToolFunction

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments

    @property
    def call_id(self) -> str:
        return self.id


class ReplyMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None
    tool_calls: list[ToolInvocationRecord] = Field(default_factory=list)


class ReplyChoice(BaseModel):
    index: int = 0
    message: ReplyMessage
    finish_reason: str = ""


class CompletionReply(BaseModel):
    """Raw reply envelope from the provider.

    Attributes:
        id: Provider completion id (empty when unavailable)
        model: The model string that answered
        created: Unix timestamp from the provider
        choices: Candidate messages; the first one is the primary reply
        usage: Token counts (prompt_tokens, completion_tokens, total_tokens)
    """

    id: str = ""
    model: str
    created: int = 0
    choices: list[ReplyChoice]
    usage: dict[str, Any] = Field(default_factory=dict)

    @property
    def message(self) -> ReplyMessage:
        return self.choices[0].message

    @property
    def content(self) -> str | None:
        return self.choices[0].message.content if self.choices else None

    @property
    def tool_calls(self) -> list[ToolInvocationRecord]:
        return self.choices[0].message.tool_calls if self.choices else []


# Parsed structured object when a response schema was requested, else the envelope.
CompletionResult = Union[CompletionReply, dict[str, Any]]
