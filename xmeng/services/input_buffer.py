"""Text buffer shared by manual typing and voice capture."""

from collections.abc import Callable

from xmeng.utils.logging import get_logger

logger = get_logger(__name__)


class InputLockedError(Exception):
    """Manual edit attempted while the buffer is read-only."""


class InputBuffer:
    """The message being composed.

    Manual edits go through ``set_text``/``type_text`` and are rejected while
    the buffer is read-only (voice capture owns it then). Voice capture writes
    with ``write``, which ignores the lock.
    """

    def __init__(self, text: str = "", on_change: Callable[[str], None] | None = None):
        self._text = text
        self.read_only = False
        self.on_change = on_change

    @property
    def text(self) -> str:
        return self._text

    def set_text(self, text: str) -> None:
        """Replace the text as a manual edit."""
        if self.read_only:
            raise InputLockedError("Input is read-only while voice capture is active")
        self.write(text)

    def type_text(self, text: str) -> None:
        """Append typed characters as a manual edit."""
        self.set_text(self._text + text)

    def write(self, text: str) -> None:
        """Replace the text regardless of the read-only flag."""
        if text == self._text:
            return
        self._text = text
        if self.on_change:
            self.on_change(text)

    def submit(self) -> str | None:
        """Take the trimmed text for sending and clear the buffer.

        Returns:
            The message to send, or None when there is nothing to send or the
            buffer is locked
        """
        if self.read_only:
            logger.debug("Submit ignored while input is read-only")
            return None

        message = self._text.strip()
        if not message:
            return None

        self.write("")
        return message
