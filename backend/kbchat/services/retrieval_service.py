from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional

from fastapi import Request

from kbchat.rag.embedder import Embedder, EmbeddingError
from kbchat.rag.score_filter import ScoreFilter
from kbchat.rag.types import NO_RESULTS_CONTEXT, Query, RetrievalResult, ScoredMatch
from kbchat.rag.vector_store import KnowledgeBaseStore

logger = logging.getLogger(__name__)


class RetrievalError(RuntimeError):
    """Raised when embedding or vector search fails."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class RetrievalService:
    """Embed a question, search the knowledge base and build prompt context.

    This service never calls a chat model; it is shared by the answer
    pipeline and the retrieval-only API.
    """

    def __init__(
        self,
        *,
        embedder: Embedder,
        store: KnowledgeBaseStore,
        score_filter: Optional[ScoreFilter] = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._score_filter = score_filter or ScoreFilter()

    async def retrieve(self, query: Query) -> RetrievalResult:
        try:
            query_embedding = await self._embedder.embed(query.text)
        except EmbeddingError as exc:
            raise RetrievalError("EMBEDDING_FAILED", str(exc)) from exc

        try:
            retrieved = await self._store.search_nearest(query_embedding, query.top_k)
        except Exception as exc:  # noqa: BLE001
            raise RetrievalError("VECTOR_SEARCH_FAILED", "Knowledge base search failed.") from exc

        if not retrieved:
            logger.debug("No documents found for question=%r", query.text[:80])
            return RetrievalResult(question=query.text, matches=[], context=NO_RESULTS_CONTEXT)

        # Upstream order is not trusted; results are exposed best first.
        kept = sorted(
            self._score_filter(retrieved, query.min_score),
            key=lambda match: match.score,
            reverse=True,
        )
        return RetrievalResult(question=query.text, matches=kept, context=build_context(kept))

    async def index_document(
        self,
        *,
        doc_type: str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Embed and store one knowledge-base document."""

        try:
            embedding = await self._embedder.embed(content)
        except EmbeddingError as exc:
            raise RetrievalError("EMBEDDING_FAILED", str(exc)) from exc
        return await self._store.add_document(
            doc_type=doc_type,
            content=content,
            metadata=metadata,
            embedding=embedding,
            embed_provider=self._embedder.provider,
            embed_model=self._embedder.model_name,
        )


def build_context(matches: Sequence[ScoredMatch]) -> str:
    """Join matches as header block plus content, separated by blank lines."""

    if not matches:
        return NO_RESULTS_CONTEXT
    blocks = [
        f"【docId={match.document_id}, type={match.doc_type}, score={match.score:.3f}】\n"
        f"{match.content}"
        for match in matches
    ]
    return "\n\n".join(blocks)


def get_retrieval_service(request: Request) -> RetrievalService:
    """Dependency to access the retrieval service from app state."""

    return request.app.state.retrieval_service
