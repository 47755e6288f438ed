"""
Model provider implementations for voice chat
"""

from .base import (
    TranscriptionProvider,
    ReplyProvider,
    TextToSpeechProvider
)

from .factory import ModelProviderFactory

__all__ = [
    'TranscriptionProvider',
    'ReplyProvider',
    'TextToSpeechProvider',
    'ModelProviderFactory'
]
