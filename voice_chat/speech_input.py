# voice_chat/speech_input.py
"""
Speech input: continuous recognition wrapped into transcript events
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Callable, Optional

from .errors import PermissionDenied, RecognitionUnavailable
from .events import (
    CaptureStalled,
    Event,
    FinalTranscript,
    InterimTranscript,
    PermissionChanged,
    RecognitionFailed,
)
from .notifications import ERROR, Notifier, LogNotifier
from .state import PermissionState

logger = logging.getLogger(__name__)

ResultCallback = Callable[[str, bool], None]
EndCallback = Callable[[], None]
ErrorCallback = Callable[[str, str], None]

# Recognition error codes reported by backends
NOT_ALLOWED = "not-allowed"
AUDIO_CAPTURE = "audio-capture"
NO_SPEECH = "no-speech"
NETWORK = "network"


class RecognitionBackend(ABC):
    """A platform speech recognizer

    ``start`` begins one recognition session. While it runs the backend
    reports ``on_result(text, is_final)`` any number of times, an
    ``on_error(code, message)`` on failure, and ``on_end()`` once when the
    session finishes for any reason other than ``stop``. All callbacks must
    be invoked on the event loop thread.
    """

    def is_available(self) -> bool:
        return True

    async def check_permission(self) -> PermissionState:
        return PermissionState.GRANTED

    @abstractmethod
    def start(self, on_result: ResultCallback, on_end: EndCallback, on_error: ErrorCallback) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass


class SpeechInputController:
    """Turns a recognition backend into interim/final transcript events.

    The controller never decides on its own to listen: capture only starts
    on ``start_capture`` (or the retry of a pending ``start_capture`` once
    permission is granted) and only restarts itself once per idle window
    when the backend ends unexpectedly.
    """

    def __init__(
        self,
        backend: Optional[RecognitionBackend],
        notifier: Optional[Notifier] = None,
        restart_cooldown: float = 5.0,
    ):
        self.backend = backend
        self.notifier = notifier or LogNotifier()
        self.restart_cooldown = restart_cooldown
        self.permission_state = PermissionState.UNKNOWN
        self.interim = ""

        self._emit: Callable[[Event], None] = lambda event: None
        self._capturing = False
        self._pending_start = False
        self._utterance_done = False
        self._generation = 0

        # One automatic restart per idle window
        self._restart_used = False
        self._cooldown_handle: Optional[asyncio.TimerHandle] = None

        self._denied_notice_shown = False
        self._unsupported_notice_shown = False
        self._no_device_notice_shown = False

    def bind(self, emit: Callable[[Event], None]):
        """Route events to the coordinator"""
        self._emit = emit

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def is_supported(self) -> bool:
        return self.backend is not None and self.backend.is_available()

    @property
    def has_pending_start(self) -> bool:
        return self._pending_start

    # ------------------------------------------------------------------ #
    def start_capture(self) -> None:
        """Begin continuous recognition; no-op if already capturing"""
        if self._capturing:
            return

        if not self.is_supported:
            logger.warning("Speech recognition unavailable; text input only")
            if not self._unsupported_notice_shown:
                self._unsupported_notice_shown = True
                self._notify(ERROR, "Speech Recognition Unavailable",
                             "Speech recognition is not supported here. You can still type your messages.")
            return

        if self.permission_state == PermissionState.DENIED:
            logger.info("Microphone permission denied; capture request kept pending")
            self._pending_start = True
            return

        self._pending_start = False
        self._begin()

    def stop_capture(self) -> None:
        """Stop recognition; safe to call when not capturing"""
        self._pending_start = False
        if not self._capturing:
            return

        self._capturing = False
        self._generation += 1
        self.interim = ""
        try:
            self.backend.stop()
        except Exception as e:
            logger.error(f"Error stopping speech recognition: {e}")
        logger.info("Speech recognition stopped")

    def reset(self) -> None:
        """Return to a fresh state for a new session"""
        self.stop_capture()
        self._restart_used = False
        if self._cooldown_handle:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None

    def set_permission(self, state: PermissionState) -> None:
        old_state = self.permission_state
        if old_state == state:
            return
        self.permission_state = state
        logger.info(f"Microphone permission: {old_state.value} -> {state.value}")
        self._emit(PermissionChanged(state=state))

        if state == PermissionState.DENIED:
            if not self._denied_notice_shown:
                self._denied_notice_shown = True
                self._notify(ERROR, "Microphone Access Denied",
                             "Please enable microphone access to use voice features.")
        elif state == PermissionState.GRANTED and self._pending_start:
            logger.info("Microphone permission granted; retrying pending capture")
            self._pending_start = False
            self._begin()

    async def refresh_permission(self) -> PermissionState:
        """Ask the backend for the current microphone permission"""
        if self.backend is None:
            return self.permission_state
        try:
            state = await self.backend.check_permission()
        except Exception as e:
            logger.error(f"Error checking microphone permission: {e}")
            return self.permission_state
        self.set_permission(state)
        return state

    # ------------------------------------------------------------------ #
    def _begin(self) -> None:
        self._generation += 1
        generation = self._generation
        self._capturing = True
        self._utterance_done = False
        self.interim = ""
        try:
            self.backend.start(
                on_result=partial(self._on_result, generation),
                on_end=partial(self._on_end, generation),
                on_error=partial(self._on_error, generation),
            )
            logger.info("Speech recognition started")
        except PermissionDenied:
            self._capturing = False
            self._pending_start = True
            self.set_permission(PermissionState.DENIED)
        except RecognitionUnavailable as e:
            self._capturing = False
            logger.warning(f"Speech recognition unavailable: {e}")
        except Exception as e:
            self._capturing = False
            logger.error(f"Error starting speech recognition: {e}")
            self._emit(RecognitionFailed(code="start-failed", message=str(e)))

    def _on_result(self, generation: int, text: str, is_final: bool) -> None:
        if generation != self._generation or not self._capturing:
            return

        if not is_final:
            # Each interim replaces the previous one
            self.interim = text
            self._emit(InterimTranscript(text=text))
            return

        if self._utterance_done:
            return
        final_text = (text or "").strip()
        if not final_text:
            logger.debug("Empty final transcript, treating as end without result")
            self._on_end(generation)
            return

        self._utterance_done = True
        logger.info(f"Final transcript: {final_text}")
        self.stop_capture()
        self._emit(FinalTranscript(text=final_text))

    def _on_end(self, generation: int) -> None:
        if generation != self._generation or not self._capturing:
            return

        self._capturing = False
        self.interim = ""

        if not self._restart_used:
            self._restart_used = True
            self._arm_cooldown()
            logger.info("Speech recognition ended unexpectedly; restarting once")
            self._begin()
            return

        logger.warning("Speech recognition ended again; waiting for the next listen request")
        self._emit(CaptureStalled(reason="recognition ended without a result"))

    def _on_error(self, generation: int, code: str, message: str = "") -> None:
        if generation != self._generation:
            return
        logger.error(f"Speech recognition error: {code} {message}".strip())

        if code == NOT_ALLOWED:
            wanted = self._capturing
            self.stop_capture()
            self._pending_start = wanted
            self.set_permission(PermissionState.DENIED)
            return

        if code == AUDIO_CAPTURE:
            self.stop_capture()
            if not self._no_device_notice_shown:
                self._no_device_notice_shown = True
                self._notify(ERROR, "No Microphone Found",
                             "Please connect a microphone to use voice features.")
            self._emit(RecognitionFailed(code=code, message=message))
            return

        # Transient failures follow the same bounded restart as an unexpected end
        self._on_end(generation)

    def _arm_cooldown(self) -> None:
        if self._cooldown_handle:
            self._cooldown_handle.cancel()
        loop = asyncio.get_running_loop()
        self._cooldown_handle = loop.call_later(self.restart_cooldown, self._reset_restart_budget)

    def _reset_restart_budget(self) -> None:
        self._cooldown_handle = None
        self._restart_used = False

    def _notify(self, kind: str, title: str, message: str) -> None:
        try:
            self.notifier.notify(kind, title, message)
        except Exception as e:
            logger.error(f"Notifier failed: {e}")
