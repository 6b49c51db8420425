from __future__ import annotations

import json
import logging
import math
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kbchat.rag.embedder import cosine_similarity
from kbchat.rag.types import ScoredMatch
from kbchat.repos.kb_repo import KbRepo

logger = logging.getLogger(__name__)


class KnowledgeBaseStore(ABC):
    """Abstract vector index over knowledge-base documents."""

    @abstractmethod
    async def add_document(
        self,
        *,
        doc_type: str,
        content: str,
        metadata: Optional[dict[str, Any]],
        embedding: Sequence[float],
        embed_provider: str,
        embed_model: str,
    ) -> str:
        """Store one document and its vector; returns the document id."""

    @abstractmethod
    async def search_nearest(self, query_embedding: Sequence[float], limit: int) -> list[ScoredMatch]:
        """Return up to ``limit`` nearest documents, best first."""


class SQLiteKnowledgeBase(KnowledgeBaseStore):
    """SQL-backed knowledge base with in-process cosine similarity."""

    _MAX_CANDIDATES = 5000

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def add_document(
        self,
        *,
        doc_type: str,
        content: str,
        metadata: Optional[dict[str, Any]],
        embedding: Sequence[float],
        embed_provider: str,
        embed_model: str,
    ) -> str:
        vector = [float(value) for value in embedding]
        norm = math.sqrt(sum(value * value for value in vector))
        document_id = uuid.uuid4().hex
        async with self._sessionmaker() as db:
            async with db.begin():
                await KbRepo(db).add_document(
                    document_id=document_id,
                    doc_type=doc_type,
                    content=content,
                    metadata_json=json.dumps(metadata or {}, ensure_ascii=False),
                    embed_provider=embed_provider,
                    embed_model=embed_model,
                    vector_json=json.dumps(vector, separators=(",", ":")),
                    dim=len(vector),
                    vector_norm=norm if norm > 0 else 1.0,
                )
        return document_id

    async def search_nearest(self, query_embedding: Sequence[float], limit: int) -> list[ScoredMatch]:
        if limit <= 0:
            return []

        query = [float(value) for value in query_embedding]
        query_norm = math.sqrt(sum(value * value for value in query))
        if query_norm <= 0:
            return []

        async with self._sessionmaker() as db:
            rows = await KbRepo(db).list_vectors(dim=len(query), limit=self._MAX_CANDIDATES)

        scored: list[ScoredMatch] = []
        for row in rows:
            try:
                candidate = [float(value) for value in json.loads(row.vector_json)]
            except (TypeError, ValueError):
                logger.warning("Skipping document %s with unreadable vector", row.id)
                continue
            if len(candidate) != len(query):
                continue
            scored.append(
                ScoredMatch(
                    document_id=row.id,
                    doc_type=row.doc_type,
                    content=row.content,
                    metadata=_load_metadata(row.metadata_json),
                    score=cosine_similarity(query, query_norm, candidate, float(row.vector_norm)),
                )
            )

        scored.sort(key=lambda match: match.score, reverse=True)
        return scored[:limit]


def _load_metadata(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}
