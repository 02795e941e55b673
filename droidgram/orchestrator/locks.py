"""Per-conversation serialization with a global concurrency cap."""

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class ConversationLockManager:
    """
    Runs at most one handler per conversation and at most max_concurrent overall.

    Messages for the same conversation are processed in arrival order;
    conversations beyond the cap wait in FIFO order for a free slot.
    """

    def __init__(self, max_concurrent: int = 10):
        self.max_concurrent = max(1, max_concurrent)
        self._slots = asyncio.Semaphore(self.max_concurrent)
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}
        self._active: set[str] = set()
        self._waiting = 0

    async def acquire_lock(self, conversation_id: str, handler: Callable[[], Awaitable[T]]) -> T:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._refs[conversation_id] = self._refs.get(conversation_id, 0) + 1
        self._waiting += 1
        waiting = True
        try:
            async with lock:
                async with self._slots:
                    self._waiting -= 1
                    waiting = False
                    self._active.add(conversation_id)
                    try:
                        return await handler()
                    finally:
                        self._active.discard(conversation_id)
        finally:
            if waiting:
                self._waiting -= 1
            self._refs[conversation_id] -= 1
            if self._refs[conversation_id] == 0:
                del self._refs[conversation_id]
                del self._locks[conversation_id]

    def get_stats(self) -> dict[str, int]:
        return {
            "active": len(self._active),
            "queued": self._waiting,
            "max_concurrent": self.max_concurrent,
            "conversations": len(self._locks),
        }

