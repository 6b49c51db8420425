from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kbchat.rag.types import ScoredMatch
from kbchat.repos.chat_log_repo import ChatLogRepo

logger = logging.getLogger(__name__)


class ChatLogService:
    """Best-effort audit trail of answered questions."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], enabled: bool = True) -> None:
        self._sessionmaker = sessionmaker
        self.enabled = enabled

    async def record_chat(
        self,
        *,
        session_id: str,
        model: Optional[str],
        question: str,
        prompt: Optional[str],
        answer: str,
        matches: Sequence[ScoredMatch],
    ) -> None:
        if not self.enabled:
            return
        async with self._sessionmaker() as db:
            async with db.begin():
                await ChatLogRepo(db).add(
                    session_id=session_id,
                    model=model,
                    question=question,
                    prompt=prompt,
                    answer=answer,
                    documents_json=serialize_matches(matches),
                )


def serialize_matches(matches: Sequence[ScoredMatch]) -> str:
    if not matches:
        return "[]"
    try:
        return json.dumps([match.to_payload() for match in matches], ensure_ascii=False)
    except (TypeError, ValueError):
        logger.warning("Failed to serialize scored documents for chat log", exc_info=True)
        return "[]"
