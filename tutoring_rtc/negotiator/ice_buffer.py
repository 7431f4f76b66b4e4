from __future__ import annotations

from collections import deque
from typing import Awaitable, Callable, Deque, Generic, List, TypeVar

T = TypeVar("T")


class PendingIceBuffer(Generic[T]):
    """ICE candidates that arrived before the remote description.

    Candidates are handed back in receipt order, each exactly once: a flush
    empties the buffer before applying anything, so a candidate pushed while
    a flush is in progress waits for the next one.
    """

    def __init__(self) -> None:
        self._pending: Deque[T] = deque()

    def push(self, candidate: T) -> None:
        self._pending.append(candidate)

    def drain(self) -> List[T]:
        drained = list(self._pending)
        self._pending.clear()
        return drained

    async def flush(self, apply: Callable[[T], Awaitable[None]]) -> int:
        """Apply every buffered candidate in order; returns how many were applied."""
        applied = 0
        for candidate in self.drain():
            await apply(candidate)
            applied += 1
        return applied

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)
