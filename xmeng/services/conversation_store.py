"""In-memory state of the conversation view: conversation list, active pointer, messages."""

from collections.abc import Callable
from datetime import UTC, datetime

from xmeng.clients.backend import BackendClient
from xmeng.models.chat import ChatMessage, Conversation
from xmeng.utils.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[], None]


class ConversationStore:
    """Ordered message list and active conversation, with change notification.

    Messages are mutated in place by the streaming session controller; every
    mutation is followed by ``notify()`` so the view can re-render.
    """

    def __init__(self, client: BackendClient):
        """Initialize conversation store.

        Args:
            client: Backend client used for conversation CRUD
        """
        self.client = client
        self.conversations: list[Conversation] = []
        self.total_conversations: int = 0
        self.active_conversation_id: int | None = None
        self.messages: list[ChatMessage] = []
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        """Tell every listener that the state changed."""
        for listener in list(self._listeners):
            listener()

    @property
    def active_conversation(self) -> Conversation | None:
        """The selected conversation, if it is in the loaded list."""
        if self.active_conversation_id is None:
            return None
        return self.get_conversation(self.active_conversation_id)

    @property
    def streaming_message(self) -> ChatMessage | None:
        """The in-flight assistant message, if any."""
        return next((m for m in self.messages if m.streaming), None)

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        """Find a loaded conversation by id."""
        return next((c for c in self.conversations if c.id == conversation_id), None)

    def append_message(self, message: ChatMessage) -> ChatMessage:
        """Append a message to the active conversation's list.

        Raises:
            ValueError: If a streaming message is appended while another one is
                still streaming
        """
        if message.streaming and self.streaming_message is not None:
            raise ValueError("Another message is already streaming")

        self.messages.append(message)
        self.notify()
        return message

    def touch_conversation(self, conversation_id: int, name: str | None = None) -> None:
        """Record activity on a conversation, optionally with a new display name."""
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            logger.debug(f"Conversation {conversation_id} not loaded, skipping update")
            return

        if name:
            conversation.name = name
        conversation.updated_at = datetime.now(UTC)
        self.notify()

    async def load_conversations(self, skip: int = 0, limit: int = 50) -> list[Conversation]:
        """Replace the conversation list with one page from the backend."""
        page = await self.client.list_conversations(skip=skip, limit=limit)
        self.conversations = page.conversations
        self.total_conversations = page.total
        logger.info(f"Loaded {len(page.conversations)} of {page.total} conversations")
        self.notify()
        return self.conversations

    async def create_conversation(self, name: str = "") -> Conversation:
        """Create a conversation and make it the active one."""
        conversation = await self.client.create_conversation(name)
        self.conversations.insert(0, conversation)
        self.total_conversations += 1
        self.active_conversation_id = conversation.id
        self.messages = []
        self.notify()
        return conversation

    async def select_conversation(self, conversation_id: int) -> None:
        """Make a conversation active and load its history."""
        if conversation_id == self.active_conversation_id:
            return

        self.active_conversation_id = conversation_id
        self.messages = []
        self.notify()

        detail = await self.client.get_conversation(conversation_id)
        if self.active_conversation_id != conversation_id:
            # Another conversation was selected while this one was loading
            return

        self.messages = detail.messages
        logger.info(f"Selected conversation {conversation_id} with {len(detail.messages)} messages")
        self.notify()

    async def rename_conversation(self, conversation_id: int, name: str) -> Conversation:
        """Rename a conversation on the backend and in the list."""
        updated = await self.client.update_conversation(conversation_id, name)
        self.conversations = [updated if c.id == conversation_id else c for c in self.conversations]
        self.notify()
        return updated

    async def delete_conversation(self, conversation_id: int) -> None:
        """Delete a conversation; clears the message cache if it was active."""
        await self.client.delete_conversation(conversation_id)

        before = len(self.conversations)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        self.total_conversations -= before - len(self.conversations)

        if self.active_conversation_id == conversation_id:
            self.active_conversation_id = None
            self.messages = []
        self.notify()
