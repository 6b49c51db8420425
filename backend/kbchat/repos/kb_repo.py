from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kbchat.db.models import KbDocument
from kbchat.utils.time_utils import utc_now


class KbRepo:
    """Repository for knowledge-base document persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add_document(
        self,
        *,
        document_id: str,
        doc_type: str,
        content: str,
        metadata_json: str,
        embed_provider: str,
        embed_model: str,
        vector_json: str,
        dim: int,
        vector_norm: float,
    ) -> KbDocument:
        """Insert one document row and return it."""

        document = KbDocument(
            id=document_id,
            doc_type=doc_type,
            content=content,
            metadata_json=metadata_json,
            embed_provider=embed_provider,
            embed_model=embed_model,
            dim=dim,
            vector_json=vector_json,
            vector_norm=vector_norm,
            created_at=utc_now(),
        )
        self._db.add(document)
        await self._db.flush()
        return document

    async def list_vectors(self, *, dim: int, limit: int) -> list[KbDocument]:
        """Return documents whose vectors match the query dimension."""

        result = await self._db.execute(
            select(KbDocument)
            .where(KbDocument.dim == dim)
            .order_by(KbDocument.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
