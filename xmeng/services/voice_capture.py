"""Voice capture: continuous speech recognition written into the input buffer."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from xmeng.services.input_buffer import InputBuffer
from xmeng.utils.logging import get_logger

logger = get_logger(__name__)

NO_SPEECH_ERROR = "no-speech"


class ProviderAlreadyStartedError(Exception):
    """``start()`` was called on a recognition session that is already running."""


@dataclass(frozen=True)
class RecognitionResult:
    """One recognized phrase; interim results may still be revised."""

    transcript: str
    is_final: bool = False


class RecognitionProvider(Protocol):
    """A continuous speech recognition session.

    ``on_result`` receives every result of the current session so far, in
    order. ``on_end`` fires whenever the session stops, including after
    ``stop()`` and when the provider gives up on its own (e.g. long silence).
    """

    continuous: bool
    interim_results: bool
    lang: str

    on_result: Callable[[Sequence[RecognitionResult]], None] | None
    on_end: Callable[[], None] | None
    on_error: Callable[[str], None] | None

    def start(self) -> None:
        """Begin recognizing. Raises ProviderAlreadyStartedError if running."""
        ...

    def stop(self) -> None:
        """Stop recognizing; ``on_end`` fires afterwards."""
        ...


ProviderFactory = Callable[[], RecognitionProvider]


@dataclass
class VoiceConfig:
    """Configuration for voice capture."""

    lang: str = "zh-CN"

    # Consecutive provider-initiated restarts without a new result
    max_restarts: int = 5


class CaptureState(Enum):
    """Voice capture states."""

    IDLE = "idle"
    CAPTURING = "capturing"
    FAILED = "failed"


class VoiceCaptureController:
    """State machine around a recognition provider.

    While capturing, the input buffer shows the text typed before capture
    started followed by everything recognized since, and manual typing is
    locked out. ``confirm`` keeps that text, ``cancel`` restores the
    pre-capture text.
    """

    def __init__(
        self,
        buffer: InputBuffer,
        provider_factory: ProviderFactory,
        config: VoiceConfig | None = None,
        on_change: Callable[[CaptureState], None] | None = None,
    ):
        """Initialize voice capture controller.

        Args:
            buffer: Input buffer to write the transcript into
            provider_factory: Creates a fresh recognition session per capture
            config: Voice configuration
            on_change: Called with the new state on every state change
        """
        self.buffer = buffer
        self.provider_factory = provider_factory
        self.config = config or VoiceConfig()
        self.on_change = on_change

        self.state = CaptureState.IDLE
        self.pre_capture = ""
        self.final = ""
        self.interim = ""
        self.failure_reason: str | None = None

        self._provider: RecognitionProvider | None = None
        self._carried = ""
        self._restarts = 0

    @property
    def is_capturing(self) -> bool:
        return self.state == CaptureState.CAPTURING

    def start(self) -> None:
        """Begin capturing (idle or failed -> capturing)."""
        if self.state == CaptureState.CAPTURING:
            logger.debug("Voice capture already running")
            return

        self.pre_capture = self.buffer.text
        self.final = ""
        self.interim = ""
        self.failure_reason = None
        self._carried = ""
        self._restarts = 0

        provider = self.provider_factory()
        provider.continuous = True
        provider.interim_results = True
        provider.lang = self.config.lang
        self._attach(provider)

        self._provider = provider
        self.buffer.read_only = True
        try:
            provider.start()
        except Exception:
            logger.error("Could not start speech recognition", exc_info=True)
            self._provider = None
            self.buffer.read_only = False
            raise

        logger.info(f"Voice capture started (lang={self.config.lang})")
        self._set_state(CaptureState.CAPTURING)

    def confirm(self) -> None:
        """Stop capturing and keep the merged transcript in the buffer."""
        if self.state == CaptureState.IDLE:
            return
        self._stop_provider()
        self._reset_transcript()
        self.buffer.read_only = False
        logger.info("Voice capture confirmed")
        self._set_state(CaptureState.IDLE)

    def cancel(self) -> None:
        """Stop capturing and restore the text typed before capture started."""
        if self.state == CaptureState.IDLE:
            return
        self._stop_provider()
        self.buffer.write(self.pre_capture)
        self._reset_transcript()
        self.buffer.read_only = False
        logger.info("Voice capture cancelled")
        self._set_state(CaptureState.IDLE)

    def close(self) -> None:
        """Tear down without touching the buffer text."""
        if self._provider is not None:
            self._stop_provider()
        self._reset_transcript()
        self.buffer.read_only = False
        self.state = CaptureState.IDLE

    def _attach(self, provider: RecognitionProvider) -> None:
        provider.on_result = lambda results: self._handle_result(provider, results)
        provider.on_end = lambda: self._handle_end(provider)
        provider.on_error = lambda error: self._handle_error(provider, error)

    def _stop_provider(self) -> None:
        # Drop our reference and detach before stopping, so the end callback
        # that follows stop() cannot trigger a restart
        provider = self._provider
        self._provider = None
        if provider is None:
            return

        provider.on_result = None
        provider.on_end = None
        provider.on_error = None
        provider.stop()

    def _handle_result(self, provider: RecognitionProvider, results: Sequence[RecognitionResult]) -> None:
        if provider is not self._provider or self.state != CaptureState.CAPTURING:
            return

        # Recompute from the full result list so revised interim text is never appended twice
        final = "".join(r.transcript for r in results if r.is_final)
        interim = "".join(r.transcript for r in results if not r.is_final)

        self.final = self._carried + final
        self.interim = interim
        self._restarts = 0
        self.buffer.write(self._merged_text())

    def _handle_end(self, provider: RecognitionProvider) -> None:
        if provider is not self._provider or self.state != CaptureState.CAPTURING:
            return

        # The provider stopped on its own. The next session reports results
        # from scratch, so keep what this one produced.
        self._carried = self.final + self.interim

        if self._restarts >= self.config.max_restarts:
            self._fail(f"Recognition stopped {self._restarts + 1} times in a row without a result")
            return

        self._restarts += 1
        logger.debug(f"Recognition ended by provider, restarting ({self._restarts}/{self.config.max_restarts})")
        try:
            provider.start()
        except ProviderAlreadyStartedError:
            logger.debug("Recognition already restarting")
        except Exception as e:
            logger.error(f"Failed to restart recognition: {e}")
            self._fail(f"Failed to restart recognition: {e}")

    def _handle_error(self, provider: RecognitionProvider, error: str) -> None:
        if provider is not self._provider:
            return
        if error == NO_SPEECH_ERROR:
            # Silence; the end handler restarts the session
            return
        logger.error(f"Recognition error: {error}")

    def _fail(self, reason: str) -> None:
        logger.error(f"Voice capture failed: {reason}")
        self._stop_provider()
        self.failure_reason = reason
        self.interim = ""
        self.buffer.read_only = False
        self._set_state(CaptureState.FAILED)

    def _merged_text(self) -> str:
        captured = self.final + self.interim
        if self.pre_capture:
            return f"{self.pre_capture} {captured}"
        return captured

    def _reset_transcript(self) -> None:
        self.final = ""
        self.interim = ""
        self._carried = ""
        self._restarts = 0

    def _set_state(self, state: CaptureState) -> None:
        self.state = state
        if self.on_change:
            self.on_change(state)
