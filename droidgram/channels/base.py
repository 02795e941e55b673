"""Base chat platform interface."""

from abc import ABC, abstractmethod
from typing import Literal

StreamingMode = Literal["batch", "stream"]

# Telegram's hard limit per message
MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks under the limit, preferring newline boundaries."""
    if not text:
        return []
    parts: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        parts.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        parts.append(remaining)
    return parts


class ChatPlatform(ABC):
    """
    Abstract chat platform adapter.

    The orchestrator only ever talks to a platform through this surface.
    """

    platform_type: str = "base"

    @abstractmethod
    async def send_message(self, conversation_id: str, text: str) -> None:
        """Send text to a conversation, splitting as the platform requires."""
        pass

    @abstractmethod
    def get_streaming_mode(self) -> StreamingMode:
        pass

    async def start(self) -> None:
        """Start receiving messages. Platforms without inbound traffic need not override."""

    async def stop(self) -> None:
        """Stop receiving messages."""
