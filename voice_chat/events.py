# voice_chat/events.py
"""
Typed events consumed by the coordinator's transition function.

Every callback from recognition, synthesis, playback or a timer is turned
into one of these and handed to ``TurnTakingCoordinator.dispatch``.
Events produced by async work carry the session id they were issued for so
that a continuation resuming after an end/restart can be recognised as
stale and dropped.
"""

from dataclasses import dataclass
from typing import Optional

from .errors import SynthesisError, ReplyError
from .state import InputMode, PermissionState


@dataclass(frozen=True)
class Event:
    session_id: Optional[str] = None


# --- speech input -------------------------------------------------------- #

@dataclass(frozen=True)
class InterimTranscript(Event):
    text: str = ""


@dataclass(frozen=True)
class FinalTranscript(Event):
    text: str = ""


@dataclass(frozen=True)
class CaptureStalled(Event):
    """Recognition ended repeatedly without a result; restart budget used"""
    reason: str = ""


@dataclass(frozen=True)
class RecognitionFailed(Event):
    code: str = ""
    message: str = ""


@dataclass(frozen=True)
class PermissionChanged(Event):
    state: PermissionState = PermissionState.UNKNOWN


# --- reply --------------------------------------------------------------- #

@dataclass(frozen=True)
class ReplyResolved(Event):
    request: int = 0
    text: str = ""


@dataclass(frozen=True)
class ReplyRejected(Event):
    request: int = 0
    error: Optional[ReplyError] = None


# --- speech output ------------------------------------------------------- #

@dataclass(frozen=True)
class SynthesisResolved(Event):
    request: int = 0
    handle: object = None


@dataclass(frozen=True)
class SynthesisRejected(Event):
    request: int = 0
    error: Optional[SynthesisError] = None


@dataclass(frozen=True)
class PlaybackEnded(Event):
    handle_id: str = ""
    interrupted: bool = False


# --- timers -------------------------------------------------------------- #

@dataclass(frozen=True)
class AutoListenDue(Event):
    pass


@dataclass(frozen=True)
class SessionStarted(Event):
    pass


# --- user actions -------------------------------------------------------- #

@dataclass(frozen=True)
class TextSubmitted(Event):
    text: str = ""


@dataclass(frozen=True)
class MicMuteChanged(Event):
    muted: bool = False


@dataclass(frozen=True)
class OutputMuteChanged(Event):
    muted: bool = False


@dataclass(frozen=True)
class VolumeChanged(Event):
    volume: float = 0.0


@dataclass(frozen=True)
class StopRequested(Event):
    """User asked the assistant to stop talking"""
    pass


@dataclass(frozen=True)
class PlaybackToggled(Event):
    pass


@dataclass(frozen=True)
class ReplayRequested(Event):
    message_id: str = ""


@dataclass(frozen=True)
class InputModeChanged(Event):
    mode: InputMode = InputMode.VOICE
