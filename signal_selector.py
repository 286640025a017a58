"""Best-of selection among the candidates collected in one scanner pass."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from config import SelectionSettings
from signal_types import AGAINST, ALIGNED, BEAR, BEARISH, BULL, BULLISH, Candidate


def in_selection_window(now: datetime | float, settings: Optional[SelectionSettings] = None) -> bool:
    """Return True during the final minutes of the hour when a signal may be emitted.

    Epoch timestamps and aware datetimes are read in UTC, the same clock the
    daily counters roll over on.  Naive datetimes are taken as given.
    """

    settings = settings or SelectionSettings()
    if not isinstance(now, datetime):
        now = datetime.fromtimestamp(float(now), tz=timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.minute >= settings.window_start_minute


def quality_score(candidate: Candidate, settings: Optional[SelectionSettings] = None) -> float:
    """Rank a candidate by probability plus context bonuses.

    Aligned with the reference asset and longer timeframes score higher, as
    does a direction that matches the regime; trading against the reference
    asset costs a penalty.
    """

    settings = settings or SelectionSettings()
    score = float(candidate.probability)
    alignment = candidate.correlation.alignment
    if alignment == ALIGNED:
        score += settings.aligned_bonus
    elif alignment == AGAINST:
        score -= settings.against_penalty
    score += settings.timeframe_bonus.get(candidate.timeframe, 0.0)
    if (candidate.regime == BULL and candidate.trend == BULLISH) or (
        candidate.regime == BEAR and candidate.trend == BEARISH
    ):
        score += settings.regime_alignment_bonus
    return score


def select_best_candidate(
    candidates: Sequence[Candidate], settings: Optional[SelectionSettings] = None
) -> Optional[Candidate]:
    """Return the highest quality candidate; the earliest one wins ties."""

    best: Optional[Candidate] = None
    best_score = float("-inf")
    for candidate in candidates:
        score = quality_score(candidate, settings)
        if score > best_score:
            best, best_score = candidate, score
    return best


def strongest_candidate(candidates: Sequence[Candidate]) -> Optional[Candidate]:
    """Return the highest-probability candidate, for progress reporting."""

    best: Optional[Candidate] = None
    for candidate in candidates:
        if best is None or candidate.probability > best.probability:
            best = candidate
    return best


__all__ = ["in_selection_window", "quality_score", "select_best_candidate", "strongest_candidate"]
