from __future__ import annotations

import uuid
from typing import Any, List, Optional

from pydantic import Field

from kbchat.memory.types import ResolvedSession
from kbchat.rag.types import ScoredMatch
from kbchat.schemas.common import APIModel
from kbchat.services.model_registry import SUPPORTED_MODELS
from kbchat.tools.registry import ToolProfile

TEMP_SESSION_PREFIX = "temp-"


def _resolve_top_k(top_k: Optional[int], default: int, maximum: int) -> int:
    if top_k is None or top_k <= 0:
        return default
    return min(top_k, maximum)


def _resolve_min_score(min_score: Optional[float], default: float) -> float:
    if min_score is None or not 0.0 <= min_score <= 1.0:
        return default
    return min_score


class RetrievalQueryRequest(APIModel):
    """Retrieval-only request."""

    question: str
    top_k: Optional[int] = Field(default=None, alias="topK")
    min_score: Optional[float] = Field(default=None, alias="minScore")

    def resolve_top_k(self, default: int, maximum: int) -> int:
        return _resolve_top_k(self.top_k, default, maximum)

    def resolve_min_score(self, default: float) -> float:
        return _resolve_min_score(self.min_score, default)


class RagAnswerRequest(APIModel):
    """Question plus optional session, retrieval and model hints."""

    question: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    top_k: Optional[int] = Field(default=None, alias="topK")
    min_score: Optional[float] = Field(default=None, alias="minScore")
    model: Optional[str] = Field(default=None)
    tool_profile: Optional[str] = Field(default=None, alias="toolProfile")

    def resolve_top_k(self, default: int, maximum: int) -> int:
        return _resolve_top_k(self.top_k, default, maximum)

    def resolve_min_score(self, default: float) -> float:
        return _resolve_min_score(self.min_score, default)

    def resolve_model(self, default: str) -> str:
        """Return an allow-listed model key, else ``default``."""

        candidate = (self.model or "").strip().lower()
        return candidate if candidate in SUPPORTED_MODELS else default

    def resolve_tool_profile(self) -> ToolProfile:
        return ToolProfile.resolve(self.tool_profile)

    def resolve_session(self) -> ResolvedSession:
        """Use the caller's session id, or mint a temporary one."""

        session_id = (self.session_id or "").strip()
        if not session_id:
            return ResolvedSession(id=f"{TEMP_SESSION_PREFIX}{uuid.uuid4()}", temporary=True)
        return ResolvedSession(id=session_id, temporary=False)


class MatchOut(APIModel):
    """Scored knowledge-base document returned to clients."""

    id: str
    type: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float

    @classmethod
    def from_match(cls, match: ScoredMatch) -> "MatchOut":
        return cls.model_validate(match.to_payload())


class RetrievalResponse(APIModel):
    question: str
    documents: List[MatchOut]
    context: str


class RagAnswerResponse(APIModel):
    answer: str
    documents: List[MatchOut]


class DocumentCreateRequest(APIModel):
    """Payload for adding one knowledge-base document."""

    doc_type: str = Field(default="doc", alias="docType", min_length=1, max_length=64)
    content: str
    metadata: Optional[dict[str, Any]] = Field(default=None)


class DocumentCreateResponse(APIModel):
    id: str
