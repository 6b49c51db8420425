from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kbchat.db.models import KvList, KvListItem


class KvListRepo:
    """Repository for ordered key-value lists with per-key expiry."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_head(self, key: str) -> Optional[KvList]:
        result = await self._db.execute(select(KvList).where(KvList.key == key))
        return result.scalar_one_or_none()

    async def ensure_head(self, key: str) -> KvList:
        """Return the head row for ``key``, creating it when missing."""

        head = await self.get_head(key)
        if head is None:
            head = KvList(key=key, expires_at=None)
            self._db.add(head)
            await self._db.flush()
        return head

    async def append(self, key: str, value: str) -> None:
        self._db.add(KvListItem(key=key, value=value))
        await self._db.flush()

    async def size(self, key: str) -> int:
        result = await self._db.execute(
            select(func.count()).select_from(KvListItem).where(KvListItem.key == key)
        )
        return int(result.scalar_one())

    async def list_items(self, key: str) -> list[KvListItem]:
        result = await self._db.execute(
            select(KvListItem).where(KvListItem.key == key).order_by(KvListItem.id.asc())
        )
        return list(result.scalars().all())

    async def delete_items(self, item_ids: list[int]) -> None:
        if not item_ids:
            return
        await self._db.execute(delete(KvListItem).where(KvListItem.id.in_(item_ids)))

    async def delete_key(self, key: str) -> None:
        await self._db.execute(delete(KvListItem).where(KvListItem.key == key))
        await self._db.execute(delete(KvList).where(KvList.key == key))

    async def set_expiry(self, key: str, expires_at: Optional[float]) -> bool:
        """Set the key's expiry; returns False when the key does not exist."""

        head = await self.get_head(key)
        if head is None:
            return False
        head.expires_at = expires_at
        await self._db.flush()
        return True
