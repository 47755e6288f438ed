# voice_chat/errors.py
"""
Error taxonomy for the voice conversation runtime
"""

from typing import Optional


class VoiceChatError(Exception):
    """Base class for all voice chat errors"""


# === MICROPHONE / RECOGNITION ===

class PermissionDenied(VoiceChatError):
    """Microphone access was refused"""


class RecognitionUnavailable(VoiceChatError):
    """No speech recognition capability on this platform"""


class RecognitionTransientFailure(VoiceChatError):
    """Recognition session ended or errored unexpectedly"""

    def __init__(self, code: str, message: str = ""):
        self.code = code
        super().__init__(message or code)


# === SYNTHESIS ===

class SynthesisError(VoiceChatError):
    """Text-to-speech generation failed"""


class SynthesisQuotaExceeded(SynthesisError):
    """Synthesis usage budget is exhausted; expected to recur for the session"""


class SynthesisFailed(SynthesisError):
    """Any other synthesis failure"""


# === REPLY ===

class ReplyError(VoiceChatError):
    """Assistant reply could not be fetched"""


class ReplyNetworkError(ReplyError):
    """The reply backend could not be reached"""


class ReplyUpstreamError(ReplyError):
    """The reply backend answered with an error status"""

    def __init__(self, status: Optional[int], message: str):
        self.status = status
        self.message = message
        super().__init__(f"Upstream error {status}: {message}")
