"""Conversational memory for chat-capable nodes.

A MemoryWindow is a bounded, ordered history of (role, content) turns. When
more than ``max_messages`` turns are appended the oldest are evicted first.

MemoryManager hands out windows keyed by a memory scope (by default
``"<session id>:<node id>"``). Windows live as long as the manager, i.e. the
logical conversation session, not a single run, up to ``max_scopes`` scopes;
beyond that the least recently used idle scope is dropped. Persisting them across
processes is the job of a MemoryStore collaborator; the manager only defines
the windowing contract.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 20
DEFAULT_MAX_SCOPES = 1024


@dataclass(frozen=True)
class Turn:
    """A single conversational turn."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str

    def to_llm_dict(self) -> dict[str, str]:
        """Convert to OpenAI-format message dict."""
        return {"role": self.role, "content": self.content}


class MemoryWindow:
    """FIFO-bounded sequence of turns."""

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES, turns: list[Turn] | None = None):
        if max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        self._turns: deque[Turn] = deque(turns or [], maxlen=max_messages)

    @property
    def max_messages(self) -> int:
        return self._turns.maxlen or 0

    def append(self, turn: Turn) -> None:
        """Add a turn, evicting the oldest ones beyond ``max_messages``."""
        self._turns.append(turn)

    def extend(self, turns: list[Turn]) -> None:
        for turn in turns:
            self.append(turn)

    def snapshot(self) -> list[Turn]:
        """Return the current window, oldest first."""
        return list(self._turns)

    def resize(self, max_messages: int) -> None:
        if max_messages != self.max_messages:
            self._turns = deque(self._turns, maxlen=max_messages)

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)


@runtime_checkable
class MemoryStore(Protocol):
    """Protocol for memory persistence backends."""

    async def load(self, scope: str) -> list[Turn]: ...

    async def save(self, scope: str, turns: list[Turn]) -> None: ...


class InMemoryMemoryStore:
    """Process-local MemoryStore, mostly useful for tests and single-process servers."""

    def __init__(self) -> None:
        self._data: dict[str, list[Turn]] = {}

    async def load(self, scope: str) -> list[Turn]:
        return list(self._data.get(scope, []))

    async def save(self, scope: str, turns: list[Turn]) -> None:
        self._data[scope] = list(turns)


class MemoryManager:
    """
    Hands out MemoryWindows by scope and serializes access per scope.

    Example:
        manager = MemoryManager()
        scope = manager.scope_key(session_id="s1", node_id="assistant")
        async with manager.lock(scope):
            window = await manager.window(scope, max_messages=10)
            window.append(Turn("user", "hi"))
            await manager.persist(scope)
    """

    def __init__(
        self,
        store: MemoryStore | None = None,
        default_max_messages: int = DEFAULT_MAX_MESSAGES,
        max_scopes: int = DEFAULT_MAX_SCOPES,
    ):
        if max_scopes < 1:
            raise ValueError("max_scopes must be at least 1")
        self._store = store
        self._default_max_messages = default_max_messages
        self._max_scopes = max_scopes
        self._windows: OrderedDict[str, MemoryWindow] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def scope_key(session_id: str | None, node_id: str, scope: str | None = None) -> str:
        """Memory scope for a node: explicit scope wins, else session + node id."""
        base = scope or node_id
        return f"{session_id or 'default'}:{base}"

    def lock(self, scope: str) -> asyncio.Lock:
        """Per-scope lock; nodes sharing a scope never mutate it concurrently."""
        lock = self._locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope] = lock
        return lock

    async def window(self, scope: str, max_messages: int | None = None) -> MemoryWindow:
        """Get or create the window for ``scope``."""
        limit = max_messages or self._default_max_messages
        window = self._windows.get(scope)
        if window is None:
            turns: list[Turn] = []
            if self._store is not None:
                turns = await self._store.load(scope)
                if turns:
                    logger.debug(f"Loaded {len(turns)} memory turns for scope '{scope}'")
            window = MemoryWindow(limit, turns)
            self._windows[scope] = window
            self._evict(keep=scope)
        else:
            window.resize(limit)
            self._windows.move_to_end(scope)
        return window

    def _evict(self, keep: str) -> None:
        """Drop least recently used scopes beyond ``max_scopes``; locked scopes stay."""
        for scope in list(self._windows):
            if len(self._windows) <= self._max_scopes:
                return
            lock = self._locks.get(scope)
            if scope == keep or (lock is not None and lock.locked()):
                continue
            self.forget(scope)
            logger.debug(f"Evicted memory scope '{scope}'")

    async def persist(self, scope: str) -> None:
        """Hand the window's current contents to the store, if one is configured."""
        window = self._windows.get(scope)
        if window is None or self._store is None:
            return
        await self._store.save(scope, window.snapshot())

    def scopes(self) -> list[str]:
        return list(self._windows)

    def forget(self, scope: str) -> None:
        """Release a scope. Its turns survive only in the MemoryStore, if any."""
        self._windows.pop(scope, None)
        self._locks.pop(scope, None)
