from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kbchat.api import health as health_api
from kbchat.api import kb as kb_api
from kbchat.api import rag as rag_api
from kbchat.core.config import get_settings
from kbchat.core.logging import setup_logging
from kbchat.db.base import create_engine, create_sessionmaker, init_db
from kbchat.memory.list_store import create_list_store
from kbchat.rag.direct_answer import DirectAnswerDetector
from kbchat.rag.embedder import create_embedder
from kbchat.rag.score_filter import ScoreFilter
from kbchat.rag.vector_store import SQLiteKnowledgeBase
from kbchat.services.answer_pipeline import AnswerPipeline
from kbchat.services.chat_log_service import ChatLogService
from kbchat.services.chat_memory_service import ChatMemoryService
from kbchat.services.model_registry import build_model_registry
from kbchat.services.prompt_builder import PromptBuilder
from kbchat.services.retrieval_service import RetrievalService
from kbchat.tools.registry import ToolRegistry
from kbchat.tools.web_guide import WEB_GUIDE_TOOL


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings.db_url)
    sessionmaker = create_sessionmaker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        yield
        await app.state.answer_pipeline.drain()
        await engine.dispose()

    app = FastAPI(title="kbchat", lifespan=lifespan)
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.memory_service = ChatMemoryService(
        create_list_store(sessionmaker=sessionmaker, settings=settings),
        key_prefix=settings.memory_key_prefix,
        max_messages=settings.memory_max_messages,
        prompt_messages=settings.prompt_window(),
        temporary_ttl_sec=settings.memory_temporary_ttl_sec,
        persistent_ttl_sec=settings.memory_persistent_ttl_sec,
    )
    app.state.retrieval_service = RetrievalService(
        embedder=create_embedder(settings),
        store=SQLiteKnowledgeBase(sessionmaker),
        score_filter=ScoreFilter(
            margin=settings.rag_score_margin,
            absolute_floor=settings.rag_absolute_floor,
        ),
    )
    app.state.model_registry = build_model_registry(settings)
    app.state.tool_registry = ToolRegistry([WEB_GUIDE_TOOL])
    app.state.chat_log_service = ChatLogService(sessionmaker, enabled=settings.chat_log_enabled)
    app.state.answer_pipeline = AnswerPipeline(
        retrieval_service=app.state.retrieval_service,
        memory_service=app.state.memory_service,
        model_registry=app.state.model_registry,
        direct_detector=DirectAnswerDetector(
            min_score=settings.direct_min_score,
            margin=settings.direct_margin,
            mode=settings.direct_mode,
        ),
        prompt_builder=PromptBuilder(),
        tool_registry=app.state.tool_registry,
        chat_log_service=app.state.chat_log_service,
        default_top_k=settings.rag_default_top_k,
        max_top_k=settings.rag_max_top_k,
        default_min_score=settings.rag_default_min_score,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_api.router)
    app.include_router(rag_api.router)
    app.include_router(kb_api.router)

    return app


app = create_app()
