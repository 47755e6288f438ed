# voice_chat/lifecycle.py
"""
Session creation and teardown
"""

import asyncio
import logging
from typing import Optional

from .message_log import MessageLog
from .speech_input import SpeechInputController
from .speech_output import SpeechOutputController
from .state import (
    AudioOutputState,
    ConversationSession,
    MicState,
    MutePreferences,
    SessionStatus,
    TurnState,
)

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """Creates sessions and tears them down in a fixed order"""

    def __init__(self, speech_input: SpeechInputController, speech_output: SpeechOutputController):
        self.input = speech_input
        self.output = speech_output

    def create_session(self, mute: Optional[MutePreferences] = None) -> ConversationSession:
        session = ConversationSession(mute)
        logger.info(f"Created conversation session {session.id[:8]}")
        return session

    def activate(self, session: ConversationSession) -> None:
        if session.status != SessionStatus.UNINITIALIZED:
            raise RuntimeError(f"Cannot activate a session that is {session.status.value}")
        self.input.reset()
        self.output.set_volume(0.0 if session.mute.output_muted else session.mute.volume)
        session.status = SessionStatus.ACTIVE
        logger.info(f"Session {session.id[:8]} active")

    async def teardown(self, session: ConversationSession, restarting: bool = False) -> None:
        """Stop capture, stop playback, release audio, cancel timers, drop the log.

        Every step runs even if an earlier one fails. The session is marked
        ended first so that events fired by the teardown itself are dropped.
        """
        if session.status == SessionStatus.ENDED:
            logger.debug(f"Session {session.id[:8]} already torn down")
            return

        logger.info(f"Tearing down session {session.id[:8]} ({'restart' if restarting else 'end'})")
        session.status = SessionStatus.ENDED
        current = asyncio.current_task()
        pending = [t for t in session.tasks if not t.done() and t is not current]

        steps = (
            ("stop capture", self.input.stop_capture),
            ("stop playback", self.output.stop),
            ("release audio", self.output.release),
            ("cancel scheduled tasks", session.cancel_tasks),
        )
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.error(f"Teardown step '{name}' failed: {e}")

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if restarting:
            session.messages.clear()
        else:
            # Detach the log; holders of the old one keep an unchanged copy
            session.messages = MessageLog()

        self.input.reset()
        session.auto_listen_task = None
        session.speaking_handle_id = None
        session.turn_state = TurnState.IDLE
        session.mic_state = MicState.OFF
        session.audio_output_state = AudioOutputState.SILENT
        logger.info(f"Session {session.id[:8]} ended")
