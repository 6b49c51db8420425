from __future__ import annotations

from typing import Sequence

import pytest

from conftest import StubKnowledgeBase, make_match
from kbchat.db.base import create_engine, create_sessionmaker, init_db
from kbchat.rag.embedder import DeterministicEmbedder, Embedder, EmbeddingError
from kbchat.rag.types import NO_RESULTS_CONTEXT, Query
from kbchat.rag.vector_store import SQLiteKnowledgeBase
from kbchat.services.retrieval_service import RetrievalError, RetrievalService, build_context


class FailingEmbedder(Embedder):
    provider = "failing"
    model_name = "failing-v1"
    dimension = 8

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        raise EmbeddingError("embedding backend unavailable")


def _service(store, embedder=None) -> RetrievalService:
    return RetrievalService(embedder=embedder or DeterministicEmbedder(dimension=16), store=store)


@pytest.mark.anyio
async def test_retrieve_filters_and_sorts_best_first():
    store = StubKnowledgeBase(
        [
            make_match("mid", 0.84, content="mid"),
            make_match("top", 0.90, content="top"),
            make_match("weak", 0.50, content="weak"),
        ]
    )

    result = await _service(store).retrieve(Query(text="question", top_k=3, min_score=0.60))

    assert [match.document_id for match in result.matches] == ["top", "mid"]
    assert result.context.startswith("【docId=top, type=doc, score=0.900】\ntop")
    assert "\n\n【docId=mid" in result.context
    assert store.search_calls == 1


@pytest.mark.anyio
async def test_retrieve_respects_top_k():
    store = StubKnowledgeBase([make_match(f"d{index}", 0.9, content="x") for index in range(5)])

    result = await _service(store).retrieve(Query(text="question", top_k=2))

    assert len(result.matches) == 2


@pytest.mark.anyio
async def test_retrieve_empty_knowledge_base_returns_sentinel_context():
    result = await _service(StubKnowledgeBase()).retrieve(Query(text="question"))

    assert result.matches == []
    assert result.context == NO_RESULTS_CONTEXT


@pytest.mark.anyio
async def test_retrieve_wraps_embedding_failure():
    service = _service(StubKnowledgeBase(), embedder=FailingEmbedder())

    with pytest.raises(RetrievalError) as exc_info:
        await service.retrieve(Query(text="question"))

    assert exc_info.value.code == "EMBEDDING_FAILED"


@pytest.mark.anyio
async def test_retrieve_wraps_search_failure():
    service = _service(StubKnowledgeBase(error=ConnectionError("index down")))

    with pytest.raises(RetrievalError) as exc_info:
        await service.retrieve(Query(text="question"))

    assert exc_info.value.code == "VECTOR_SEARCH_FAILED"


def test_build_context_for_no_matches():
    assert build_context([]) == NO_RESULTS_CONTEXT


@pytest.mark.anyio
async def test_index_and_search_sqlite_knowledge_base(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'kb.db'}")
    await init_db(engine)
    try:
        service = _service(SQLiteKnowledgeBase(create_sessionmaker(engine)))
        target_id = await service.index_document(
            doc_type="chat_qa",
            content="【问题】What are the opening hours?【回答】Nine to five.",
            metadata={"source": "faq"},
        )
        await service.index_document(doc_type="doc", content="Bananas are yellow fruit.")

        result = await service.retrieve(
            Query(text="【问题】What are the opening hours?【回答】Nine to five.", top_k=3)
        )
    finally:
        await engine.dispose()

    assert result.matches[0].document_id == target_id
    assert result.matches[0].score == pytest.approx(1.0)
    assert result.matches[0].doc_type == "chat_qa"
    assert result.matches[0].metadata == {"source": "faq"}
