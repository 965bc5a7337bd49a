"""Maps parsed stream events onto typed callbacks."""

from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel, ValidationError

from xmeng.clients.sse_parser import ServerSentEvent
from xmeng.models.events import DoneEvent, ErrorEvent, StreamEvent, TokenEvent, ToolCallEvent, ToolResultEvent
from xmeng.utils.logging import get_logger

logger = get_logger(__name__)

EVENT_MODELS: dict[str, type[BaseModel]] = {
    "token": TokenEvent,
    "tool_call": ToolCallEvent,
    "tool_result": ToolResultEvent,
    "done": DoneEvent,
    "error": ErrorEvent,
}


@dataclass
class StreamCallbacks:
    """Handlers for the recognized events of a message exchange."""

    on_token: Callable[[TokenEvent], None] | None = None
    on_tool_call: Callable[[ToolCallEvent], None] | None = None
    on_tool_result: Callable[[ToolResultEvent], None] | None = None
    on_done: Callable[[DoneEvent], None] | None = None
    on_error: Callable[[ErrorEvent], None] | None = None


def parse_stream_event(event: ServerSentEvent) -> StreamEvent | None:
    """Deserialize an event payload into the model registered for its name.

    Returns:
        The typed event, or None for unknown names and malformed payloads
    """
    model = EVENT_MODELS.get(event.event)
    if model is None:
        logger.debug(f"Ignoring unknown event type: {event.event}")
        return None

    try:
        return model.model_validate_json(event.data)
    except ValidationError as e:
        # A bad payload is dropped, never fatal to the exchange
        logger.warning(f"Failed to parse '{event.event}' event data: {event.data[:200]} ({e.error_count()} errors)")
        return None


def dispatch_event(event: ServerSentEvent, callbacks: StreamCallbacks) -> StreamEvent | None:
    """Parse an event and invoke the matching callback.

    Args:
        event: Raw event from the parser
        callbacks: Handlers to route to

    Returns:
        The typed event that was dispatched, or None if it was dropped
    """
    parsed = parse_stream_event(event)

    match parsed:
        case TokenEvent():
            handler = callbacks.on_token
        case ToolCallEvent():
            handler = callbacks.on_tool_call
        case ToolResultEvent():
            handler = callbacks.on_tool_result
        case DoneEvent():
            handler = callbacks.on_done
        case ErrorEvent():
            handler = callbacks.on_error
        case _:
            return None

    if handler:
        handler(parsed)
    return parsed
