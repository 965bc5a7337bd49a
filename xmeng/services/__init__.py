"""Conversation state, streaming exchanges and voice capture."""

from xmeng.services.chat_session import ChatSessionController
from xmeng.services.conversation_store import ConversationStore
from xmeng.services.input_buffer import InputBuffer
from xmeng.services.voice_capture import CaptureState, VoiceCaptureController

__all__ = ["CaptureState", "ChatSessionController", "ConversationStore", "InputBuffer", "VoiceCaptureController"]
