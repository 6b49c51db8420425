from __future__ import annotations

import logging
from collections.abc import Sequence

from kbchat.rag.types import ScoredMatch

logger = logging.getLogger(__name__)

DEFAULT_SCORE_MARGIN = 0.10
DEFAULT_ABSOLUTE_FLOOR = 0.25


def compute_dynamic_threshold(
    requested_min_score: float,
    top_score: float,
    *,
    margin: float = DEFAULT_SCORE_MARGIN,
    absolute_floor: float = DEFAULT_ABSOLUTE_FLOOR,
) -> float:
    """Derive the effective cutoff from the requested minimum and the best score.

    When the best match clears ``requested_min_score`` the cutoff tightens to
    ``max(requested, top - margin)``. Otherwise it relaxes to
    ``max(absolute_floor, top - margin)``. The result never exceeds ``top_score``.
    """

    from_top = top_score - margin
    if top_score >= requested_min_score:
        threshold = max(requested_min_score, from_top)
    else:
        threshold = max(absolute_floor, from_top)
    return min(threshold, top_score)


def filter_matches(
    matches: Sequence[ScoredMatch],
    requested_min_score: float,
    *,
    margin: float = DEFAULT_SCORE_MARGIN,
    absolute_floor: float = DEFAULT_ABSOLUTE_FLOOR,
) -> list[ScoredMatch]:
    """Keep matches scoring at or above the dynamic threshold.

    Input order is preserved. A non-empty input always yields a non-empty
    output: if nothing survives, the single best match is kept.
    """

    if not matches:
        return []

    best = max(matches, key=lambda match: match.score)
    threshold = compute_dynamic_threshold(
        requested_min_score,
        best.score,
        margin=margin,
        absolute_floor=absolute_floor,
    )
    kept = [match for match in matches if match.score >= threshold]
    if not kept:
        logger.debug(
            "All matches filtered out (top_score=%.3f, threshold=%.3f); keeping best match",
            best.score,
            threshold,
        )
        kept = [best]
    return kept


class ScoreFilter:
    """Score filter bound to configured margin and floor."""

    def __init__(
        self,
        margin: float = DEFAULT_SCORE_MARGIN,
        absolute_floor: float = DEFAULT_ABSOLUTE_FLOOR,
    ) -> None:
        self._margin = margin
        self._absolute_floor = absolute_floor

    def threshold(self, requested_min_score: float, top_score: float) -> float:
        return compute_dynamic_threshold(
            requested_min_score,
            top_score,
            margin=self._margin,
            absolute_floor=self._absolute_floor,
        )

    def __call__(
        self, matches: Sequence[ScoredMatch], requested_min_score: float
    ) -> list[ScoredMatch]:
        return filter_matches(
            matches,
            requested_min_score,
            margin=self._margin,
            absolute_floor=self._absolute_floor,
        )
