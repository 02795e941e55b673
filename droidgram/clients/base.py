"""Base interface for AI coding CLI clients."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal

ChunkType = Literal["assistant", "system", "tool", "result"]


@dataclass
class MessageChunk:
    """One piece of streamed client output."""
    type: ChunkType
    content: str = ""
    session_id: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None


class AssistantClient(ABC):
    """
    Abstract base for clients that run a prompt against a coding CLI.

    Implementations yield MessageChunk objects; a "result" chunk carries
    the session id to resume with on the next turn.
    """

    name: str = "base"

    @abstractmethod
    def send_query(
        self,
        prompt: str,
        cwd: str,
        resume_session_id: str | None = None,
    ) -> AsyncIterator[MessageChunk]:
        """Run a prompt in cwd and stream the output."""
        pass
