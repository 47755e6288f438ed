# voice_chat/model_providers/base.py
"""
Base interfaces for model providers
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, List
import io


class TranscriptionProvider(ABC):
    """Base interface for speech-to-text providers"""

    @abstractmethod
    async def transcribe(
        self,
        audio_buffer: io.BytesIO,
        language: Optional[str] = None,
        **kwargs
    ) -> str:
        """Transcribe audio to text"""
        pass


class ReplyProvider(ABC):
    """Base interface for the assistant reply collaborator

    Implementations raise ``ReplyNetworkError`` when the backend cannot be
    reached and ``ReplyUpstreamError`` when it answers with an error.
    """

    agent_name: str = "assistant"

    @abstractmethod
    async def get_reply(
        self,
        text: str,
        history: List[Dict[str, str]],
    ) -> str:
        """Return the assistant's reply to ``text``"""
        pass


class TextToSpeechProvider(ABC):
    """Base interface for text-to-speech providers

    Implementations raise ``SynthesisQuotaExceeded`` when the usage budget
    is exhausted and ``SynthesisFailed`` for anything else.
    """

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        **kwargs
    ) -> bytes:
        """Convert text to speech audio data"""
        pass
