"""Streaming session controller: one send, one streamed exchange, one growing assistant message."""

from contextlib import aclosing

import httpx

from xmeng.clients.backend import BackendClient
from xmeng.clients.event_dispatcher import StreamCallbacks, dispatch_event
from xmeng.clients.sse_parser import aiter_sse_events
from xmeng.models.chat import ChatMessage, ToolInvocation
from xmeng.models.events import DoneEvent, ErrorEvent, TokenEvent, ToolCallEvent, ToolResultEvent
from xmeng.services.conversation_store import ConversationStore
from xmeng.utils.logging import get_logger

logger = get_logger(__name__)

CONNECT_ERROR_DETAIL = "Network error: failed to connect"
TRUNCATED_STREAM_DETAIL = "Stream ended without a response"


def format_error(partial: str, detail: str) -> str:
    """Error text for a failed exchange, keeping whatever was already streamed."""
    if partial:
        return f"{partial}\n\nError: {detail}"
    return f"Error: {detail}"


class StreamingExchange:
    """State of one in-flight exchange: the placeholder message and its tools.

    The placeholder is mutated only through this object. Once a terminal event
    has been applied the exchange is finished and ignores everything else.
    """

    def __init__(self, store: ConversationStore, conversation_id: int, placeholder: ChatMessage):
        self.store = store
        self.conversation_id = conversation_id
        self.placeholder = placeholder
        self.finished = False

    @property
    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_token=self.on_token,
            on_tool_call=self.on_tool_call,
            on_tool_result=self.on_tool_result,
            on_done=self.on_done,
            on_error=self.on_error,
        )

    def on_token(self, event: TokenEvent) -> None:
        if self.finished:
            return
        self.placeholder.content += event.content
        self.store.notify()

    def on_tool_call(self, event: ToolCallEvent) -> None:
        if self.finished:
            return
        logger.info(f"Tool call started: {event.name}")
        self.placeholder.tool_calls.append(ToolInvocation(name=event.name, args=event.args))
        self.store.notify()

    def on_tool_result(self, event: ToolResultEvent) -> None:
        if self.finished:
            return

        # No call id on the wire: the earliest unresolved call of that name wins
        invocation = next(
            (tc for tc in self.placeholder.tool_calls if tc.name == event.name and not tc.resolved),
            None,
        )
        if invocation is None:
            logger.warning(f"Tool result for '{event.name}' has no pending call, ignoring")
            return

        invocation.result = event.result
        self.store.notify()

    def on_done(self, event: DoneEvent) -> None:
        if self.finished:
            return
        self.finished = True

        self.placeholder.id = event.message_id
        self.placeholder.streaming = False
        logger.info(f"Exchange in conversation {self.conversation_id} done, message id: {event.message_id}")

        if event.conversation_name:
            self.store.touch_conversation(self.conversation_id, event.conversation_name)
        self.store.notify()

    def on_error(self, event: ErrorEvent) -> None:
        if self.finished:
            return
        self.finished = True

        logger.error(f"Exchange in conversation {self.conversation_id} failed: {event.detail}")
        self.placeholder.content = format_error(self.placeholder.content, event.detail)
        self.placeholder.streaming = False
        self.store.notify()

    def fail(self, detail: str) -> None:
        """Terminate the exchange with a locally synthesized error."""
        self.on_error(ErrorEvent(detail=detail))


class ChatSessionController:
    """Runs streamed message exchanges against the conversation store.

    Only one exchange runs at a time; the view is expected to disable sending
    while ``is_busy`` is set.
    """

    def __init__(self, store: ConversationStore, client: BackendClient | None = None):
        """Initialize session controller.

        Args:
            store: Conversation state to mutate
            client: Backend client (defaults to the store's client)
        """
        self.store = store
        self.client = client or store.client
        self._exchange: StreamingExchange | None = None
        self._sending = False

    @property
    def is_streaming(self) -> bool:
        return self._exchange is not None

    @property
    def is_busy(self) -> bool:
        """Whether a send is in progress, including conversation setup before streaming."""
        return self._sending

    async def send(self, conversation_id: int | None, content: str) -> None:
        """Send a message and stream the assistant's answer into the store.

        Args:
            conversation_id: Target conversation; None uses the active one,
                creating a conversation when none is selected. Any other
                conversation is selected first.
            content: Message text

        Raises:
            ValueError: If content is empty
            BackendError: If the target conversation could not be created or loaded
        """
        content = content.strip()
        if not content:
            raise ValueError("Message content cannot be empty")

        if self._sending:
            logger.warning("Send ignored: an exchange is already in flight")
            return

        self._sending = True
        try:
            if conversation_id is None:
                conversation_id = self.store.active_conversation_id
            if conversation_id is None:
                conversation = await self.store.create_conversation()
                conversation_id = conversation.id
            elif conversation_id != self.store.active_conversation_id:
                await self.store.select_conversation(conversation_id)

            self.store.append_message(ChatMessage(role="human", content=content))
            placeholder = self.store.append_message(ChatMessage(role="assistant", streaming=True))

            exchange = StreamingExchange(self.store, conversation_id, placeholder)
            self._exchange = exchange
            try:
                await self._run_exchange(exchange, content)
            finally:
                if not exchange.finished:
                    exchange.fail(TRUNCATED_STREAM_DETAIL)
                if self._exchange is exchange:
                    self._exchange = None
        finally:
            self._sending = False

    async def _run_exchange(self, exchange: StreamingExchange, content: str) -> None:
        logger.info(f"Sending message to conversation {exchange.conversation_id}")
        connected = False

        try:
            async with self.client.stream_message(exchange.conversation_id, content) as response:
                connected = True

                if response.is_error:
                    exchange.fail(await self.client.error_detail(response))
                    return

                callbacks = exchange.callbacks
                async with aclosing(aiter_sse_events(response.aiter_bytes())) as events:
                    async for event in events:
                        dispatch_event(event, callbacks)
                        if exchange.finished:
                            break

        except httpx.HTTPError as e:
            if not connected:
                logger.error(f"Could not open message stream: {e}")
                exchange.fail(CONNECT_ERROR_DETAIL)
            else:
                logger.error(f"Stream reading error: {e}")
                exchange.fail(f"Stream error: {e}")

        if not exchange.finished:
            logger.warning(f"Stream for conversation {exchange.conversation_id} ended without a terminal event")
            exchange.fail(TRUNCATED_STREAM_DETAIL)
