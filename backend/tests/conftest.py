import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from typing import Any, Optional, Sequence

import httpx
import pytest

from kbchat.core.config import get_settings
from kbchat.db.base import init_db
from kbchat.main import create_app
from kbchat.providers.base import LLMResult, ProviderError, ProviderRuntimeConfig
from kbchat.rag.types import ScoredMatch
from kbchat.rag.vector_store import KnowledgeBaseStore
from kbchat.services.model_registry import ModelBackend


@pytest.fixture
def app(tmp_path, monkeypatch):
    db_path = tmp_path / "test_kbchat.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("MEMORY_BACKEND", "sql")
    monkeypatch.setenv("EMBED_PROVIDER", "deterministic")
    monkeypatch.setenv("EMBED_DIM", "64")
    for name in ("DEEPSEEK_API_KEY", "OPENAI_API_KEY", "EMBED_OPENAI_API_KEY", "OLLAMA_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    app = create_app()
    app.state.model_registry.set_backends({"deepseek": make_backend(StubAdapter())})
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    await init_db(app.state.engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.engine.dispose()


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_backend(adapter: "StubAdapter", name: str = "deepseek") -> ModelBackend:
    return ModelBackend(
        name=name,
        adapter=adapter,
        config=ProviderRuntimeConfig(provider=name, model_name="stub-model"),
    )


def make_match(
    document_id: str,
    score: float,
    content: str = "",
    doc_type: str = "doc",
    metadata: Optional[dict[str, Any]] = None,
) -> ScoredMatch:
    return ScoredMatch(
        document_id=document_id,
        doc_type=doc_type,
        content=content,
        score=score,
        metadata=metadata or {},
    )


class StubAdapter:
    """Adapter stub used to avoid external API calls in tests."""

    def __init__(
        self,
        chunks: Sequence[str] = ("Hello", ", ", "world."),
        fail_after: Optional[int] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.generate_calls: list[list[dict]] = []
        self.stream_calls: list[list[dict]] = []

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        self.generate_calls.append(messages)
        return LLMResult(
            content="".join(self.chunks),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=1,
            token_out=1,
        )

    async def stream_generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]):
        self.stream_calls.append(messages)
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise ProviderError("PROVIDER_UPSTREAM", "Stream dropped.", retryable=True)
            yield chunk


class StubKnowledgeBase(KnowledgeBaseStore):
    """Knowledge base returning fixed matches and counting searches."""

    def __init__(self, matches: Sequence[ScoredMatch] = (), error: Optional[Exception] = None) -> None:
        self.matches = list(matches)
        self.error = error
        self.search_calls = 0

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
        document_id = f"doc-{len(self.matches) + 1}"
        self.matches.append(
            make_match(document_id, 1.0, content=content, doc_type=doc_type, metadata=metadata)
        )
        return document_id

    async def search_nearest(self, query_embedding: Sequence[float], limit: int) -> list[ScoredMatch]:
        self.search_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.matches)[:limit]
