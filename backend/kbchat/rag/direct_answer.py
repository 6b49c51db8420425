from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Optional

from kbchat.rag.types import ScoredMatch

logger = logging.getLogger(__name__)

DEFAULT_DIRECT_MIN_SCORE = 0.72
DEFAULT_DIRECT_MARGIN = 0.08
QA_DOC_TYPES = frozenset({"chat_qa"})
REFER_PREFIX = "Reference KB answer:\n"

_FULL_TEXT_KEYS = ("full_text", "fullText")
_PREVIEW_KEYS = ("preview",)

# Ordered: the first pattern yielding a non-empty question and answer wins.
_CN_QA = re.compile(r"【问题】\s*(.+?)\s*【回答】\s*(.+)", re.DOTALL)
_BRACKET_QA = re.compile(r"\[Q\]\s*(.+?)\s*\[A\]\s*(.+)", re.DOTALL | re.IGNORECASE)
_COLON_QA = re.compile(r"\bQ\s*[:：]\s*(.+?)\s*\bA\s*[:：]\s*(.+)", re.DOTALL | re.IGNORECASE)
_QA_PATTERNS = (_CN_QA, _BRACKET_QA, _COLON_QA)

_COLON_MARKERS = re.compile(r"\bQ\s*[:：].*\bA\s*[:：]", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class QaPair:
    question: str
    answer: str


def extract_qa(text: Optional[str]) -> Optional[QaPair]:
    """Split Q/A-shaped text into its question and answer parts."""

    if text is None:
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    for pattern in _QA_PATTERNS:
        match = pattern.search(trimmed)
        if not match:
            continue
        question = (match.group(1) or "").strip()
        answer = (match.group(2) or "").strip()
        if question and answer:
            return QaPair(question=question, answer=answer)
    return None


def looks_like_qa(text: str) -> bool:
    """Return True when text carries any supported Q/A marker pair."""

    if "【问题】" in text and "【回答】" in text:
        return True
    lowered = text.lower()
    if "[q]" in lowered and "[a]" in lowered:
        return True
    return bool(_COLON_MARKERS.search(text))


def pick_best_text(match: ScoredMatch) -> Optional[str]:
    """Return content, else metadata full text, else metadata preview."""

    if match.content and match.content.strip():
        return match.content
    metadata = match.metadata or {}
    for key in _FULL_TEXT_KEYS + _PREVIEW_KEYS:
        value = metadata.get(key)
        if value is not None:
            return str(value)
    return None


class DirectAnswerDetector:
    """Decide whether the top retrieval match can answer without generation."""

    def __init__(
        self,
        min_score: float = DEFAULT_DIRECT_MIN_SCORE,
        margin: float = DEFAULT_DIRECT_MARGIN,
        mode: str = "raw",
    ) -> None:
        self._min_score = min_score
        self._margin = margin
        mode = (mode or "").strip().lower()
        if mode not in {"raw", "refer"}:
            logger.warning("Unknown DIRECT_MODE=%s; fallback to raw", mode)
            mode = "raw"
        self._mode = mode

    def try_direct(self, matches: Sequence[ScoredMatch], question: str) -> Optional[str]:
        if not matches:
            return None

        top = matches[0]
        second_score = matches[1].score if len(matches) > 1 else 0.0
        if top.score < self._min_score:
            return None
        if len(matches) > 1 and (top.score - second_score) < self._margin:
            return None

        text = pick_best_text(top)
        is_qa_doc = (top.doc_type or "").lower() in QA_DOC_TYPES
        if not is_qa_doc:
            if text is None or not looks_like_qa(text):
                return None

        pair = extract_qa(text)
        if pair is None:
            return None
        logger.info(
            "Direct Q/A hit for question=%r (doc=%s, score=%.3f)",
            question[:80],
            top.document_id,
            top.score,
        )
        if self._mode == "refer":
            return REFER_PREFIX + pair.answer
        return pair.answer
