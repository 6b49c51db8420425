from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from fastapi import Request

from kbchat.memory.types import ResolvedSession, StoredMessage
from kbchat.rag.direct_answer import DirectAnswerDetector
from kbchat.rag.types import Query, RetrievalResult, ScoredMatch
from kbchat.schemas.rag import RagAnswerRequest
from kbchat.services.chat_log_service import ChatLogService
from kbchat.services.chat_memory_service import ChatMemoryService
from kbchat.services.model_registry import ModelRegistry
from kbchat.services.prompt_builder import (
    ANSWER_SYSTEM_PROMPT,
    STREAM_SYSTEM_PROMPT,
    TEXT_STREAM_SYSTEM_PROMPT,
    PromptBuilder,
)
from kbchat.services.retrieval_service import RetrievalService
from kbchat.tools.registry import ToolRegistry
from kbchat.utils.single_flight import SingleFlight
from kbchat.utils.time_utils import epoch_millis

logger = logging.getLogger(__name__)

STAGE_START = "start"
STAGE_HISTORY = "history"
STAGE_RETRIEVAL = "retrieval"
STAGE_ANSWER_DELTA = "answer_delta"
STAGE_ANSWER_FINAL = "answer_final"

HISTORY_SUMMARY_MESSAGES = 6
PREVIEW_MAX_CHARS = 200


@dataclass(frozen=True)
class StageEvent:
    """One step of the streamed thinking chain."""

    stage: str
    message: str
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "message": self.message, "payload": self.payload}


@dataclass
class RagAnswer:
    answer: str
    documents: list[ScoredMatch]


@dataclass
class _Turn:
    """State owned by one invocation; flushed to memory exactly once."""

    session: ResolvedSession
    question: str
    model: Optional[str] = None
    prompt: Optional[str] = None
    matches: list[ScoredMatch] = field(default_factory=list)
    parts: list[str] = field(default_factory=list)
    persisted: bool = False

    def append(self, delta: str) -> None:
        self.parts.append(delta)

    def replace(self, text: str) -> None:
        self.parts = [text]

    @property
    def text(self) -> str:
        return "".join(self.parts)


def summarize_history(messages: Sequence[StoredMessage]) -> list[dict[str, str]]:
    """Last few messages as role/content pairs for the history stage."""

    window = list(messages)[-HISTORY_SUMMARY_MESSAGES:]
    return [{"role": message.role, "content": message.content} for message in window]


def summarize_retrieval(result: RetrievalResult) -> list[dict[str, Any]]:
    """Per-match id, type, score and a short content preview."""

    summary: list[dict[str, Any]] = []
    for match in result.matches:
        content = match.content or ""
        preview = content[:PREVIEW_MAX_CHARS] + "..." if len(content) > PREVIEW_MAX_CHARS else content
        summary.append(
            {
                "id": match.document_id,
                "type": match.doc_type,
                "score": match.score,
                "preview": preview,
            }
        )
    return summary


class AnswerPipeline:
    """Retrieval-augmented answering over chat memory and generation backends.

    ``stream_events`` is the primary entry point. It fans out the history load
    and the retrieval as concurrent single-flight lookups, emits the stages
    ``start, history, retrieval, answer_delta*, answer_final`` in that order,
    and persists the turn exactly once on every exit path, including errors
    and consumer disconnects.
    """

    def __init__(
        self,
        *,
        retrieval_service: RetrievalService,
        memory_service: ChatMemoryService,
        model_registry: ModelRegistry,
        direct_detector: Optional[DirectAnswerDetector] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        tool_registry: Optional[ToolRegistry] = None,
        chat_log_service: Optional[ChatLogService] = None,
        default_top_k: int = 3,
        max_top_k: int = 20,
        default_min_score: float = 0.60,
    ) -> None:
        self._retrieval = retrieval_service
        self._memory = memory_service
        self._registry = model_registry
        self._detector = direct_detector or DirectAnswerDetector()
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._tools = tool_registry or ToolRegistry()
        self._chat_log = chat_log_service
        self._default_top_k = max(1, default_top_k)
        self._max_top_k = max(self._default_top_k, max_top_k)
        self._default_min_score = default_min_score
        self._pending_writes: set[asyncio.Task] = set()

    def to_query(self, request: RagAnswerRequest) -> Query:
        return Query(
            text=request.question,
            top_k=request.resolve_top_k(self._default_top_k, self._max_top_k),
            min_score=request.resolve_min_score(self._default_min_score),
        )

    async def answer(self, request: RagAnswerRequest) -> RagAnswer:
        """Answer with a single generation call (no direct Q/A shortcut)."""

        session = request.resolve_session()
        backend = self._registry.resolve(request.resolve_model(self._registry.default_model))
        history, retrieval = await asyncio.gather(
            self._memory.load_history(session.id),
            self._retrieval.retrieve(self.to_query(request)),
        )
        prompt = self._prompt_builder.build_user_prompt(
            request.question, retrieval, self._memory.render_history(history)
        )
        self._log_tools(request, session)

        answer = await backend.generate(ANSWER_SYSTEM_PROMPT, prompt)
        turn = _Turn(
            session=session,
            question=request.question,
            model=backend.name,
            prompt=prompt,
            matches=list(retrieval.matches),
            parts=[answer],
        )
        await self._finalize(turn)
        return RagAnswer(answer=answer, documents=list(retrieval.matches))

    async def stream_text(self, request: RagAnswerRequest) -> AsyncIterator[str]:
        """Stream plain answer text; the accumulated text is persisted on exit."""

        session = request.resolve_session()
        turn = _Turn(session=session, question=request.question)
        async with self._persist_on_exit(turn):
            backend = self._registry.resolve(request.resolve_model(self._registry.default_model))
            turn.model = backend.name
            history, retrieval = await asyncio.gather(
                self._memory.load_history(session.id),
                self._retrieval.retrieve(self.to_query(request)),
            )
            turn.matches = list(retrieval.matches)
            turn.prompt = self._prompt_builder.build_user_prompt(
                request.question, retrieval, self._memory.render_history(history)
            )
            stream = backend.generate_stream(TEXT_STREAM_SYSTEM_PROMPT, turn.prompt)
            async with aclosing(stream):
                async for delta in stream:
                    turn.append(delta)
                    yield delta

    async def stream_events(self, request: RagAnswerRequest) -> AsyncIterator[StageEvent]:
        """Stream the ordered stage events for one question."""

        session = request.resolve_session()
        question = request.question
        query = self.to_query(request)
        turn = _Turn(
            session=session,
            question=question,
            model=request.resolve_model(self._registry.default_model),
        )

        history = SingleFlight(
            lambda: self._memory.load_history(session.id), name=f"history:{session.id}"
        )
        retrieval = SingleFlight(
            lambda: self._retrieval.retrieve(query), name=f"retrieval:{session.id}"
        )
        history.start()
        retrieval.start()

        try:
            async with self._persist_on_exit(turn):
                yield StageEvent(
                    STAGE_START,
                    "Request received. Initializing thinking pipeline.",
                    {"ts": epoch_millis()},
                )

                messages = await history.get()
                yield StageEvent(
                    STAGE_HISTORY,
                    "Combined with previous conversation; some context from chat history.",
                    summarize_history(messages),
                )

                result = await retrieval.get()
                turn.matches = list(result.matches)
                yield StageEvent(
                    STAGE_RETRIEVAL,
                    "Searching knowledge base for related content.",
                    summarize_retrieval(result),
                )

                direct = self._detector.try_direct(result.matches, question)
                if direct is not None:
                    turn.replace(direct)
                    yield StageEvent(STAGE_ANSWER_FINAL, "Direct Q/A hit.", direct)
                    return

                backend = self._registry.resolve(turn.model)
                turn.model = backend.name
                turn.prompt = self._prompt_builder.build_user_prompt(
                    question, result, self._memory.render_history(messages)
                )
                self._log_tools(request, session)

                stream = backend.generate_stream(STREAM_SYSTEM_PROMPT, turn.prompt)
                async with aclosing(stream):
                    async for delta in stream:
                        turn.append(delta)
                        yield StageEvent(STAGE_ANSWER_DELTA, "Generating answer.", delta)

                yield StageEvent(STAGE_ANSWER_FINAL, "Finalized answer.", turn.text)
        finally:
            history.discard()
            retrieval.discard()

    @asynccontextmanager
    async def _persist_on_exit(self, turn: _Turn) -> AsyncIterator[_Turn]:
        try:
            yield turn
        finally:
            await self._finalize(turn)

    async def _finalize(self, turn: _Turn) -> None:
        if turn.persisted:
            return
        turn.persisted = True
        # One task owns both writes; a cancelled consumer only stops waiting for it.
        task = asyncio.create_task(self._write_turn(turn), name=f"persist:{turn.session.id}")
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)
        await asyncio.shield(task)

    async def _write_turn(self, turn: _Turn) -> None:
        try:
            await self._memory.append_turn(
                turn.session.id, turn.question, turn.text, turn.session.temporary
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist chat turn for session=%s", turn.session.id)

        if self._chat_log is None:
            return
        try:
            await self._chat_log.record_chat(
                session_id=turn.session.id,
                model=turn.model,
                question=turn.question,
                prompt=turn.prompt,
                answer=turn.text,
                matches=turn.matches,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record chat log for session=%s", turn.session.id)

    async def drain(self) -> None:
        """Wait for turn writes still running after their consumer went away."""

        if self._pending_writes:
            await asyncio.gather(*self._pending_writes)

    def _log_tools(self, request: RagAnswerRequest, session: ResolvedSession) -> None:
        profile = request.resolve_tool_profile()
        logger.debug(
            "Session=%s tool profile=%s tools=%s",
            session.id,
            profile.value,
            self._tools.tool_names_for_profile(profile),
        )


def get_answer_pipeline(request: Request) -> AnswerPipeline:
    """Dependency to access the answer pipeline from app state."""

    return request.app.state.answer_pipeline
