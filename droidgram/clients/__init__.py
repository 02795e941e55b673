"""AI coding CLI clients."""

from droidgram.clients.base import AssistantClient, MessageChunk
from droidgram.clients.droid import DroidClient, DroidClientOptions

__all__ = ["AssistantClient", "MessageChunk", "DroidClient", "DroidClientOptions"]
