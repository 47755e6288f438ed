# voice_chat/state.py
"""
State management for a voice conversation session
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set
import asyncio

from .message_log import MessageLog

logger = logging.getLogger(__name__)


class TurnState(Enum):
    """Conversation turn-taking states"""
    IDLE = "idle"                        # Nothing in flight
    LISTENING = "listening"              # Microphone armed (or waiting to be)
    AWAITING_REPLY = "awaiting_reply"    # Reply collaborator in flight
    SYNTHESIZING = "synthesizing"        # Generating reply audio
    SPEAKING = "speaking"                # Playing reply audio


class SessionStatus(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    ENDED = "ended"


class Sender(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class PermissionState(Enum):
    """Microphone access state"""
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


class AudioOutputState(Enum):
    SILENT = "silent"
    GENERATING = "generating"
    PLAYING = "playing"
    PAUSED = "paused"


class MicState(Enum):
    OFF = "off"
    CAPTURING = "capturing"
    BLOCKED = "blocked"      # Wanted, but muted / denied / unsupported


class InputMode(Enum):
    VOICE = "voice"
    TEXT = "text"


@dataclass(frozen=True)
class Message:
    """A single conversation turn"""
    text: str
    sender: Sender
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        if not self.text or not self.text.strip():
            raise ValueError("Message text must not be empty")


def create_user_message(text: str) -> Message:
    return Message(text=text.strip(), sender=Sender.USER)


def create_assistant_message(text: str) -> Message:
    return Message(text=text.strip(), sender=Sender.ASSISTANT)


def create_system_message(text: str) -> Message:
    return Message(text=text.strip(), sender=Sender.SYSTEM)


@dataclass
class MutePreferences:
    output_muted: bool = False
    input_muted: bool = False
    volume: float = 0.8

    def copy(self) -> "MutePreferences":
        return MutePreferences(self.output_muted, self.input_muted, self.volume)

    @property
    def output_silenced(self) -> bool:
        """Muted output, or a volume of zero, means nothing is synthesized"""
        return self.output_muted or self.volume <= 0


class ConversationSession:
    """Mutable aggregate owned by the coordinator for one conversation"""

    def __init__(self, mute: Optional[MutePreferences] = None):
        self.id = uuid.uuid4().hex
        self.status = SessionStatus.UNINITIALIZED
        self.messages = MessageLog()
        self.turn_state = TurnState.IDLE
        self.audio_output_state = AudioOutputState.SILENT
        self.mic_state = MicState.OFF
        self.mute = mute.copy() if mute else MutePreferences()

        # Per-session flags
        self.quota_notified = False
        self.reply_request: int = 0
        self.synthesis_request: int = 0
        self.tasks: Set[asyncio.Task] = set()
        self.speaking_handle_id: Optional[str] = None
        self.auto_listen_task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def set_turn_state(self, new_state: TurnState):
        """Turn state setter with logging"""
        old_state = self.turn_state
        if old_state == new_state:
            return
        self.turn_state = new_state
        logger.info(f"Turn transition: {old_state.value} -> {new_state.value}")

    def next_reply_request(self) -> int:
        self.reply_request += 1
        return self.reply_request

    def next_synthesis_request(self) -> int:
        self.synthesis_request += 1
        return self.synthesis_request

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Tie a background task to this session's lifetime"""
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def cancel_tasks(self) -> int:
        pending = [t for t in self.tasks if not t.done()]
        for task in pending:
            task.cancel()
        self.tasks.clear()
        return len(pending)

    def history(self, limit: int = 0):
        """User/assistant turns formatted for the reply collaborator"""
        turns = [
            {"role": m.sender.value, "content": m.text}
            for m in self.messages.all()
            if m.sender in (Sender.USER, Sender.ASSISTANT)
        ]
        if limit and len(turns) > limit:
            original_length = len(turns)
            turns = turns[-limit:]
            logger.debug(f"Trimmed reply history: {original_length} -> {len(turns)} messages")
        return turns
