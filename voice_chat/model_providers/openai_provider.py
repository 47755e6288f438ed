# voice_chat/model_providers/openai_provider.py
"""
OpenAI implementation of model providers
"""

import asyncio
import io
import logging
from typing import Optional, Dict, List

import openai
from openai import OpenAI, AsyncOpenAI

from .base import TranscriptionProvider, ReplyProvider, TextToSpeechProvider
from ..errors import (
    ReplyNetworkError,
    ReplyUpstreamError,
    SynthesisFailed,
    SynthesisQuotaExceeded,
)

logger = logging.getLogger(__name__)

QUOTA_ERROR_CODES = {"insufficient_quota", "quota_exceeded"}


def is_quota_error(error: openai.APIStatusError) -> bool:
    """True when an API error reports an exhausted usage budget"""
    code = getattr(error, "code", None)
    if code in QUOTA_ERROR_CODES:
        return True
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        detail = body.get("detail") if isinstance(body.get("detail"), dict) else body
        if detail.get("code") in QUOTA_ERROR_CODES or detail.get("status") in QUOTA_ERROR_CODES:
            return True
    return False


class OpenAITranscriptionProvider(TranscriptionProvider):
    """OpenAI Whisper API implementation"""

    def __init__(self, api_key: str, model: str = "whisper-1"):
        self.client = OpenAI(api_key=api_key)
        self.model = model

    async def transcribe(
        self,
        audio_buffer: io.BytesIO,
        language: Optional[str] = None,
        **kwargs
    ) -> str:
        """Transcribe audio using OpenAI Whisper"""
        loop = asyncio.get_running_loop()

        def _transcribe():
            audio_buffer.seek(0)
            params = {"model": self.model, "file": audio_buffer}
            if language:
                params["language"] = language
            response = self.client.audio.transcriptions.create(**params)
            return response.text.strip()

        return await loop.run_in_executor(None, _transcribe)


class OpenAIReplyProvider(ReplyProvider):
    """OpenAI chat completion as the reply collaborator"""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        system_prompt: str = "",
        timeout: float = 30.0,
        agent_name: str = "assistant",
    ):
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.system_prompt = system_prompt
        self.agent_name = agent_name

    def _build_messages(self, text: str, history: List[Dict[str, str]]) -> List[Dict[str, str]]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(history)
        # History normally already ends with this user turn
        if not history or history[-1] != {"role": "user", "content": text}:
            messages.append({"role": "user", "content": text})
        return messages

    async def get_reply(self, text: str, history: List[Dict[str, str]]) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(text, history),
            )
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise ReplyNetworkError(str(e)) from e
        except openai.APIStatusError as e:
            raise ReplyUpstreamError(e.status_code, e.message) from e

        if not completion or not completion.choices:
            raise ReplyUpstreamError(None, "Empty completion")

        content = completion.choices[0].message.content or ""
        if not content.strip():
            raise ReplyUpstreamError(None, "Assistant returned an empty reply")
        logger.info(f"💬 Reply from {self.model}: {content[:100]}...")
        return content


class OpenAITextToSpeechProvider(TextToSpeechProvider):
    """OpenAI TTS API implementation"""

    def __init__(self, api_key: str, model: str = "tts-1", voice: str = "nova"):
        self.client = OpenAI(api_key=api_key)
        self.model = model
        self.default_voice = voice

    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        **kwargs
    ) -> bytes:
        """Convert text to speech using OpenAI"""
        loop = asyncio.get_running_loop()

        def _synthesize():
            response = self.client.audio.speech.create(
                model=self.model,
                voice=voice or self.default_voice,
                input=text,
                response_format=kwargs.get("response_format", "wav")
            )
            return response.read()

        try:
            return await loop.run_in_executor(None, _synthesize)
        except openai.APIStatusError as e:
            if is_quota_error(e):
                raise SynthesisQuotaExceeded(e.message) from e
            raise SynthesisFailed(f"TTS error {e.status_code}: {e.message}") from e
        except openai.APIError as e:
            raise SynthesisFailed(str(e)) from e
