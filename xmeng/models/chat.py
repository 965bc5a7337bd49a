"""Conversation and message data models."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class Conversation(BaseModel):
    """A conversation summary as listed by the backend."""

    id: int
    name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    message_count: int = 0

    class Config:
        extra = "ignore"


class ToolInvocation(BaseModel):
    """A tool the assistant asked to run, with its result once finished."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None

    @property
    def resolved(self) -> bool:
        """Whether a result has been attached."""
        return self.result is not None


class ChatMessage(BaseModel):
    """A message in the active conversation.

    ``content`` and ``tool_calls`` only change while ``streaming`` is set, i.e.
    while the message is the placeholder of an in-flight exchange.
    """

    id: int | None = None
    role: Literal["human", "assistant"]
    content: str = ""
    tool_calls: list[ToolInvocation] = Field(default_factory=list)
    streaming: bool = False
    created_at: datetime | None = None

    class Config:
        extra = "ignore"

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: Any) -> Any:
        """Stored history uses ``ai`` for assistant turns."""
        if v == "ai":
            return "assistant"
        return v

    @field_validator("tool_calls", mode="before")
    @classmethod
    def default_tool_calls(cls, v: Any) -> Any:
        """History rows carry ``null`` when no tools were used."""
        return [] if v is None else v


class ConversationDetail(BaseModel):
    """A conversation with its full message history."""

    id: int
    name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    messages: list[ChatMessage] = Field(default_factory=list)

    class Config:
        extra = "ignore"


class ConversationListResponse(BaseModel):
    """One page of conversations."""

    conversations: list[Conversation] = Field(default_factory=list)
    total: int = 0
