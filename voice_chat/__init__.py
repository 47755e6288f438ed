# voice_chat/__init__.py
"""
Voice Chat Package
"""

from .config import Config, setup_logging
from .state import (
    TurnState,
    SessionStatus,
    Sender,
    PermissionState,
    InputMode,
    Message,
    MutePreferences,
    ConversationSession,
)
from .message_log import MessageLog
from .speech_input import SpeechInputController, RecognitionBackend
from .speech_output import SpeechOutputController, AudioPlayer, AudioHandle
from .lifecycle import SessionLifecycleManager
from .coordinator import TurnTakingCoordinator
from .notifications import Notifier, LogNotifier, ConsoleNotifier
from .utils import retry_with_backoff, signal_handler

__all__ = [
    'Config',
    'setup_logging',
    'TurnState',
    'SessionStatus',
    'Sender',
    'PermissionState',
    'InputMode',
    'Message',
    'MutePreferences',
    'ConversationSession',
    'MessageLog',
    'SpeechInputController',
    'RecognitionBackend',
    'SpeechOutputController',
    'AudioPlayer',
    'AudioHandle',
    'SessionLifecycleManager',
    'TurnTakingCoordinator',
    'Notifier',
    'LogNotifier',
    'ConsoleNotifier',
    'retry_with_backoff',
    'signal_handler',
]
