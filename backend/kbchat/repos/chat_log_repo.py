from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kbchat.db.models import ChatLog
from kbchat.utils.time_utils import utc_now


class ChatLogRepo:
    """Repository for chat audit records."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add(
        self,
        *,
        session_id: str,
        model: str | None,
        question: str,
        prompt: str | None,
        answer: str,
        documents_json: str,
    ) -> ChatLog:
        log = ChatLog(
            session_id=session_id,
            model=model,
            question=question,
            prompt=prompt,
            answer=answer,
            documents_json=documents_json,
            created_at=utc_now(),
        )
        self._db.add(log)
        await self._db.flush()
        return log

    async def list_by_session(self, session_id: str, limit: int = 50) -> list[ChatLog]:
        result = await self._db.execute(
            select(ChatLog)
            .where(ChatLog.session_id == session_id)
            .order_by(ChatLog.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
