# voice_chat/message_log.py
"""
Append-only conversation log
"""

from typing import TYPE_CHECKING, List, Tuple

if TYPE_CHECKING:
    from .state import Message


class MessageLog:
    """Ordered, append-only sequence of conversation turns"""

    def __init__(self):
        self._messages: List["Message"] = []

    def append(self, message: "Message") -> None:
        self._messages.append(message)

    def all(self) -> Tuple["Message", ...]:
        return tuple(self._messages)

    def clear(self) -> None:
        # Only lifecycle teardown calls this
        self._messages = []

    def find(self, message_id: str):
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(tuple(self._messages))
