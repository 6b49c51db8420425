from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kbchat.core.config import Settings
from kbchat.repos.kv_list_repo import KvListRepo

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ListStore(ABC):
    """Key-value store of ordered string lists with per-key TTL.

    Index arguments follow Redis list semantics: ``end`` is inclusive and
    negative indices count from the tail. Expired keys behave as absent.
    """

    @abstractmethod
    async def list_append(self, key: str, value: str) -> int:
        """Append ``value`` to the tail and return the new length."""

    @abstractmethod
    async def list_range(self, key: str, start: int, end: int) -> list[str]:
        """Return values between ``start`` and ``end`` (inclusive)."""

    @abstractmethod
    async def list_trim(self, key: str, start: int, end: int) -> None:
        """Keep only values between ``start`` and ``end`` (inclusive)."""

    @abstractmethod
    async def list_size(self, key: str) -> int:
        """Return the list length, 0 for a missing key."""

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: float) -> bool:
        """Set the key to expire after ``ttl_seconds``; False if the key is missing."""

    @abstractmethod
    async def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime in seconds, or None for missing/persistent keys."""


def resolve_bounds(size: int, start: int, end: int) -> Optional[tuple[int, int]]:
    """Normalize inclusive Redis-style bounds; None when the range is empty."""

    if size <= 0:
        return None
    if start < 0:
        start += size
    if end < 0:
        end += size
    start = max(start, 0)
    end = min(end, size - 1)
    if start > end:
        return None
    return start, end


def _expired(expires_at: Optional[float], now: float) -> bool:
    return expires_at is not None and expires_at <= now


@dataclass
class _Entry:
    values: list[str] = field(default_factory=list)
    expires_at: Optional[float] = None


class InMemoryListStore(ListStore):
    """Process-local list store used for tests and single-node dev runs."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if _expired(entry.expires_at, self._clock()):
            self._entries.pop(key, None)
            return None
        return entry

    async def list_append(self, key: str, value: str) -> int:
        entry = self._live(key)
        if entry is None:
            entry = self._entries.setdefault(key, _Entry())
        entry.values.append(value)
        return len(entry.values)

    async def list_range(self, key: str, start: int, end: int) -> list[str]:
        entry = self._live(key)
        if entry is None:
            return []
        bounds = resolve_bounds(len(entry.values), start, end)
        if bounds is None:
            return []
        return list(entry.values[bounds[0] : bounds[1] + 1])

    async def list_trim(self, key: str, start: int, end: int) -> None:
        entry = self._live(key)
        if entry is None:
            return
        bounds = resolve_bounds(len(entry.values), start, end)
        if bounds is None:
            self._entries.pop(key, None)
            return
        entry.values = entry.values[bounds[0] : bounds[1] + 1]

    async def list_size(self, key: str) -> int:
        entry = self._live(key)
        return len(entry.values) if entry else 0

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        entry.expires_at = self._clock() + ttl_seconds
        return True

    async def ttl(self, key: str) -> Optional[float]:
        entry = self._live(key)
        if entry is None or entry.expires_at is None:
            return None
        return entry.expires_at - self._clock()


class SQLListStore(ListStore):
    """List store persisted through SQLAlchemy (``kv_lists`` / ``kv_list_items``)."""

    def __init__(
        self, sessionmaker: async_sessionmaker[AsyncSession], clock: Clock = time.time
    ) -> None:
        self._sessionmaker = sessionmaker
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[KvListRepo]:
        async with self._sessionmaker() as db:
            async with db.begin():
                yield KvListRepo(db)

    async def _purge_if_expired(self, repo: KvListRepo, key: str) -> bool:
        """Delete an expired key; returns True when the key is live."""

        head = await repo.get_head(key)
        if head is None:
            return False
        if _expired(head.expires_at, self._clock()):
            await repo.delete_key(key)
            return False
        return True

    async def list_append(self, key: str, value: str) -> int:
        async with self._transaction() as repo:
            await self._purge_if_expired(repo, key)
            await repo.ensure_head(key)
            await repo.append(key, value)
            return await repo.size(key)

    async def list_range(self, key: str, start: int, end: int) -> list[str]:
        async with self._transaction() as repo:
            if not await self._purge_if_expired(repo, key):
                return []
            items = await repo.list_items(key)
        bounds = resolve_bounds(len(items), start, end)
        if bounds is None:
            return []
        return [item.value for item in items[bounds[0] : bounds[1] + 1]]

    async def list_trim(self, key: str, start: int, end: int) -> None:
        async with self._transaction() as repo:
            if not await self._purge_if_expired(repo, key):
                return
            items = await repo.list_items(key)
            bounds = resolve_bounds(len(items), start, end)
            if bounds is None:
                await repo.delete_key(key)
                return
            keep = {item.id for item in items[bounds[0] : bounds[1] + 1]}
            await repo.delete_items([item.id for item in items if item.id not in keep])

    async def list_size(self, key: str) -> int:
        async with self._transaction() as repo:
            if not await self._purge_if_expired(repo, key):
                return 0
            return await repo.size(key)

    async def expire(self, key: str, ttl_seconds: float) -> bool:
        async with self._transaction() as repo:
            if not await self._purge_if_expired(repo, key):
                return False
            return await repo.set_expiry(key, self._clock() + ttl_seconds)

    async def ttl(self, key: str) -> Optional[float]:
        async with self._transaction() as repo:
            if not await self._purge_if_expired(repo, key):
                return None
            head = await repo.get_head(key)
        if head is None or head.expires_at is None:
            return None
        return head.expires_at - self._clock()


def create_list_store(
    *, sessionmaker: async_sessionmaker[AsyncSession], settings: Settings
) -> ListStore:
    """Factory for the configured memory backend."""

    backend = settings.memory_backend.strip().lower()
    if backend == "memory":
        return InMemoryListStore()
    if backend != "sql":
        logger.warning("Unknown MEMORY_BACKEND=%s; fallback to sql", backend)
    return SQLListStore(sessionmaker)
