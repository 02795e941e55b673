"""Chat platform adapters."""

from droidgram.channels.base import ChatPlatform, split_message
from droidgram.channels.telegram import TelegramPlatform

__all__ = ["ChatPlatform", "TelegramPlatform", "split_message"]
