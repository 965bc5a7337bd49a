"""Typed payloads carried by the message event stream."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class TokenEvent(BaseModel):
    """Incremental fragment of the assistant's text."""

    content: str


class ToolCallEvent(BaseModel):
    """The assistant started a tool call."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)

    @field_validator("args", mode="before")
    @classmethod
    def default_args(cls, v: Any) -> Any:
        """Tools without parameters may send ``null`` arguments."""
        return {} if v is None else v


class ToolResultEvent(BaseModel):
    """A tool call finished."""

    name: str
    result: str


class DoneEvent(BaseModel):
    """Terminal success. Carries the persisted message id and conversation name."""

    message_id: int | None = None
    conversation_name: str | None = None


class ErrorEvent(BaseModel):
    """Terminal failure with a human-readable detail."""

    detail: str


StreamEvent = TokenEvent | ToolCallEvent | ToolResultEvent | DoneEvent | ErrorEvent
