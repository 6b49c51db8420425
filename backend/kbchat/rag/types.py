from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

NO_RESULTS_CONTEXT = "(no results)"


@dataclass(frozen=True)
class Query:
    """Retrieval request built once per incoming question."""

    text: str
    top_k: int = 3
    min_score: float = 0.60


@dataclass(frozen=True)
class ScoredMatch:
    """Knowledge-base document paired with its similarity score."""

    document_id: str
    doc_type: str
    content: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.document_id,
            "type": self.doc_type,
            "content": self.content,
            "metadata": dict(self.metadata),
            "score": self.score,
        }


@dataclass(frozen=True)
class RetrievalResult:
    """Filtered matches plus the prompt-ready context string."""

    question: str
    matches: list[ScoredMatch]
    context: str = NO_RESULTS_CONTEXT
