from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from kbchat.core.config import Settings, get_settings
from kbchat.core.security import sanitize_question
from kbchat.providers.base import ProviderError
from kbchat.rag.types import Query as RetrievalQuery
from kbchat.schemas.common import APIModel
from kbchat.schemas.rag import (
    MatchOut,
    RagAnswerRequest,
    RagAnswerResponse,
    RetrievalQueryRequest,
    RetrievalResponse,
)
from kbchat.services.answer_pipeline import AnswerPipeline, StageEvent, get_answer_pipeline
from kbchat.services.retrieval_service import (
    RetrievalError,
    RetrievalService,
    get_retrieval_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rag", tags=["rag"])

RequestT = TypeVar("RequestT", bound=APIModel)

STREAM_ERROR_EVENT = "error"


@router.post("/answer", response_model=RagAnswerResponse)
async def answer(
    payload: RagAnswerRequest,
    pipeline: AnswerPipeline = Depends(get_answer_pipeline),
    settings: Settings = Depends(get_settings),
) -> RagAnswerResponse:
    """Answer a question in one shot."""

    request = _with_clean_question(payload, settings)
    try:
        result = await pipeline.answer(request)
    except ProviderError as exc:
        raise HTTPException(status_code=_provider_status(exc), detail=exc.message) from exc
    except RetrievalError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return RagAnswerResponse(
        answer=result.answer,
        documents=[MatchOut.from_match(match) for match in result.documents],
    )


@router.post("/answer/stream")
async def answer_stream(
    payload: RagAnswerRequest,
    pipeline: AnswerPipeline = Depends(get_answer_pipeline),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Stream the thinking stages and answer as server-sent events."""

    request = _with_clean_question(payload, settings)
    return StreamingResponse(
        _event_frames(pipeline.stream_events(request)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/retrieve", response_model=RetrievalResponse)
async def retrieve_get(
    q: str = Query(..., description="Question text"),
    top_k: Optional[int] = Query(default=None, alias="topK"),
    min_score: Optional[float] = Query(default=None, alias="minScore"),
    retrieval_service: RetrievalService = Depends(get_retrieval_service),
    settings: Settings = Depends(get_settings),
) -> RetrievalResponse:
    """Retrieve knowledge-base context without calling a model."""

    payload = RetrievalQueryRequest(question=q, top_k=top_k, min_score=min_score)
    return await _retrieve(payload, retrieval_service, settings)


@router.post("/retrieve", response_model=RetrievalResponse)
async def retrieve_post(
    payload: RetrievalQueryRequest,
    retrieval_service: RetrievalService = Depends(get_retrieval_service),
    settings: Settings = Depends(get_settings),
) -> RetrievalResponse:
    """Retrieve knowledge-base context without calling a model."""

    return await _retrieve(payload, retrieval_service, settings)


async def _retrieve(
    payload: RetrievalQueryRequest,
    retrieval_service: RetrievalService,
    settings: Settings,
) -> RetrievalResponse:
    request = _with_clean_question(payload, settings)
    query = RetrievalQuery(
        text=request.question,
        top_k=request.resolve_top_k(settings.rag_default_top_k, settings.rag_max_top_k),
        min_score=request.resolve_min_score(settings.rag_default_min_score),
    )
    try:
        result = await retrieval_service.retrieve(query)
    except RetrievalError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return RetrievalResponse(
        question=result.question,
        documents=[MatchOut.from_match(match) for match in result.matches],
        context=result.context,
    )


async def _event_frames(events: AsyncIterator[StageEvent]) -> AsyncIterator[str]:
    async with aclosing(events):
        try:
            async for event in events:
                yield format_sse(event.stage, event.to_dict())
        except (ProviderError, RetrievalError) as exc:
            logger.warning("Answer stream failed code=%s message=%s", exc.code, exc.message)
            yield format_sse(STREAM_ERROR_EVENT, {"code": exc.code, "message": exc.message})
        except Exception:  # noqa: BLE001
            logger.exception("Answer stream failed")
            yield format_sse(
                STREAM_ERROR_EVENT,
                {"code": "INTERNAL_ERROR", "message": "Answer stream failed."},
            )


def format_sse(event: str, data: Any) -> str:
    """Encode one server-sent event frame."""

    body = json.dumps(data, ensure_ascii=False)
    lines = "".join(f"data: {line}\n" for line in body.splitlines() or [""])
    return f"event: {event}\n{lines}\n"


def _with_clean_question(payload: RequestT, settings: Settings) -> RequestT:
    question = sanitize_question(payload.question or "", settings.max_question_chars)
    if not question:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Question must not be empty.",
        )
    return payload.model_copy(update={"question": question})


def _provider_status(exc: ProviderError) -> int:
    if exc.code == "NO_BACKEND_AVAILABLE":
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if exc.code in {"API_KEY_REQUIRED", "PROVIDER_BASE_URL_MISSING"}:
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_502_BAD_GATEWAY
