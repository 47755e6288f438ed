# voice_chat/utils.py
"""
Utility functions for the voice conversation runtime
"""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """Retry a coroutine factory with exponential backoff"""
    for attempt in range(max_retries + 1):
        try:
            return await factory()
        except retry_on as e:
            if attempt == max_retries:
                logger.error(f"Final retry attempt failed: {e}")
                raise

            delay = base_delay * (2 ** attempt)
            logger.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {delay}s...")
            await asyncio.sleep(delay)


def signal_handler(signum, coordinator, stop_event: asyncio.Event):
    """Handle Ctrl-C / SIGTERM gracefully."""
    logger.info(f"Received signal {signum}; shutting down…")
    coordinator.request_shutdown()
    stop_event.set()
