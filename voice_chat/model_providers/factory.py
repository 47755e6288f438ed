# voice_chat/model_providers/factory.py
"""
Factory for creating model providers from configuration
"""

import os
import logging

from .base import TranscriptionProvider, ReplyProvider, TextToSpeechProvider
from .openai_provider import (
    OpenAITranscriptionProvider,
    OpenAIReplyProvider,
    OpenAITextToSpeechProvider,
)
from .webhook_reply import WebhookReplyProvider

logger = logging.getLogger(__name__)


class ModelProviderFactory:
    """Factory for creating model providers"""

    @staticmethod
    def _api_key(kwargs, purpose: str) -> str:
        api_key = kwargs.get("api_key") or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(f"OpenAI API key required for {purpose}")
        return api_key

    @staticmethod
    def create_transcription_provider(provider_type: str = "openai", **kwargs) -> TranscriptionProvider:
        """Create a transcription provider"""
        if provider_type != "openai":
            logger.warning(f"Transcription provider {provider_type} not implemented, using OpenAI")

        return OpenAITranscriptionProvider(
            api_key=ModelProviderFactory._api_key(kwargs, "transcription"),
            model=kwargs.get("model", "whisper-1")
        )

    @staticmethod
    def create_reply_provider(provider_type: str, **kwargs) -> ReplyProvider:
        """Create the assistant reply collaborator"""
        if provider_type == "webhook":
            url = kwargs.get("url")
            if not url:
                raise ValueError("Webhook URL required for the webhook reply provider")
            logger.info(f"✅ Using webhook agent at {url}")
            return WebhookReplyProvider(
                url=url,
                agent_name=kwargs.get("agent_name", "assistant"),
                timeout=kwargs.get("timeout", 30.0),
                max_retries=kwargs.get("max_retries", 2),
                retry_delay=kwargs.get("retry_delay", 1.0),
            )

        if provider_type != "openai":
            logger.warning(f"Reply provider {provider_type} not implemented, using OpenAI")

        model = kwargs.get("model", "gpt-4o-mini")
        logger.info(f"✅ Using OpenAI {model}")
        return OpenAIReplyProvider(
            api_key=ModelProviderFactory._api_key(kwargs, "replies"),
            model=model,
            system_prompt=kwargs.get("system_prompt", ""),
            timeout=kwargs.get("timeout", 30.0),
            agent_name=kwargs.get("agent_name", "assistant"),
        )

    @staticmethod
    def create_tts_provider(provider_type: str = "openai", **kwargs) -> TextToSpeechProvider:
        """Create a TTS provider"""
        if provider_type != "openai":
            logger.warning(f"TTS provider {provider_type} not implemented, using OpenAI")

        return OpenAITextToSpeechProvider(
            api_key=ModelProviderFactory._api_key(kwargs, "TTS"),
            model=kwargs.get("model", "tts-1"),
            voice=kwargs.get("voice", "nova")
        )

    @staticmethod
    def from_config(config):
        """Build (transcription, reply, tts) providers for a Config"""
        transcription = None
        if config.openai_api_key:
            transcription = ModelProviderFactory.create_transcription_provider(
                api_key=config.openai_api_key, model=config.stt_model
            )
        else:
            logger.warning("No OpenAI API key; speech recognition disabled, text input only")

        reply = ModelProviderFactory.create_reply_provider(
            config.reply_provider,
            api_key=config.openai_api_key,
            model=config.chat_model,
            system_prompt=config.system_prompt,
            url=config.webhook_url,
            agent_name=config.agent_name,
            timeout=config.reply_timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )
        tts = None
        if config.openai_api_key:
            tts = ModelProviderFactory.create_tts_provider(
                api_key=config.openai_api_key, model=config.tts_model, voice=config.tts_voice
            )
        else:
            logger.warning("No OpenAI API key; speech output disabled")
        return transcription, reply, tts
