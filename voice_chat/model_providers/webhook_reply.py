# voice_chat/model_providers/webhook_reply.py
"""
Webhook reply provider: posts each user turn to an agent endpoint
"""

import asyncio
import logging
from typing import Any, Dict, List

import requests

from .base import ReplyProvider
from ..errors import ReplyNetworkError, ReplyUpstreamError
from ..utils import retry_with_backoff

logger = logging.getLogger(__name__)


class WebhookReplyProvider(ReplyProvider):
    """Reply collaborator backed by an HTTP agent webhook"""

    def __init__(
        self,
        url: str,
        agent_name: str = "assistant",
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        self.url = url
        self.agent_name = agent_name
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = requests.Session()

    def _post(self, payload: Dict[str, Any]) -> str:
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise ReplyNetworkError(str(e)) from e

        if response.status_code != 200:
            raise ReplyUpstreamError(response.status_code, self._error_message(response))

        try:
            data = response.json()
        except ValueError as e:
            raise ReplyUpstreamError(response.status_code, f"Invalid JSON reply: {e}") from e

        return self._extract_reply(data, response.status_code)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] or response.reason or "Unknown error"

        detail = data.get("detail") if isinstance(data, dict) else None
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"])
        if isinstance(detail, str):
            return detail
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"HTTP error! Status: {response.status_code}"

    @staticmethod
    def _extract_reply(data: Any, status: int) -> str:
        """Accept the common reply shapes agents return"""
        if isinstance(data, str):
            reply = data
        elif isinstance(data, dict):
            if data.get("choices"):
                reply = data["choices"][0].get("message", {}).get("content", "")
            else:
                reply = data.get("reply") or data.get("output") or data.get("response") or ""
        else:
            reply = ""

        if not reply or not str(reply).strip():
            raise ReplyUpstreamError(status, "Agent returned an empty reply")
        return str(reply)

    async def get_reply(self, text: str, history: List[Dict[str, str]]) -> str:
        payload = {
            "agent": self.agent_name,
            "message": text,
            "messages": history or [{"role": "user", "content": text}],
        }
        loop = asyncio.get_running_loop()

        async def attempt():
            return await loop.run_in_executor(None, self._post, payload)

        reply = await retry_with_backoff(
            attempt,
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
            retry_on=(ReplyNetworkError,),
        )
        logger.info(f"💬 Reply from webhook agent '{self.agent_name}': {reply[:100]}...")
        return reply
