"""Gating and scoring of signals that trade against the reference asset trend.

A candidate whose direction opposes the BTC trend has to prove a genuine
reversal before it can compete with aligned signals.  Rejections are normal
outcomes, reported through :class:`CounterTrendOutcome` with a readable
reason; nothing here raises for a failed gate.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from adaptive_store import AdaptiveStore
from config import CounterTrendSettings
from log_utils import setup_logger
from signal_types import (
    AGAINST,
    ALIGNED,
    BEARISH,
    BULLISH,
    CorrelationSignal,
    IndicatorBundle,
    PatternBundle,
    safe_float,
)

logger = setup_logger(__name__)


@dataclass
class CounterTrendOutcome:
    score: float
    is_counter_trend: bool = False
    rejected: bool = False
    reason: Optional[str] = None
    bonus: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)


def calculate_reversal_strength(
    indicators: IndicatorBundle,
    patterns: PatternBundle,
    settings: Optional[CounterTrendSettings] = None,
) -> float:
    """Return a 0-100 estimate of how convincing a reversal setup is."""

    settings = settings or CounterTrendSettings()
    strength = 0.0

    rsi = safe_float(indicators.rsi)
    if rsi is not None:
        if rsi <= 20 or rsi >= 80:
            strength += 30
        elif rsi <= 30 or rsi >= 70:
            strength += 20

    if indicators.macd is not None:
        histogram = safe_float(indicators.macd.histogram)
        if histogram is not None:
            macd_strength = abs(histogram) * 1e6
            if macd_strength > 10:
                strength += 25
            elif macd_strength > 5:
                strength += 15

    if indicators.rsi_divergence is True:
        strength += 20

    if patterns.has_any(settings.reversal_patterns):
        strength += 15

    if indicators.volume_ratio() > 1.5:
        strength += 10

    return min(100.0, strength)


def is_sideways_breakout(indicators: IndicatorBundle, patterns: PatternBundle) -> bool:
    """Return True for a breakout out of a flat market (RSI near 50 or MAs within 2 %)."""

    if not patterns.breakout:
        return False
    rsi = safe_float(indicators.rsi)
    rsi_neutral = rsi is not None and 40 < rsi < 60
    ma_short = safe_float(indicators.ma_short)
    ma_long = safe_float(indicators.ma_long)
    ma_flat = (
        ma_short is not None
        and ma_long is not None
        and ma_long != 0
        and abs(ma_short - ma_long) / abs(ma_long) < 0.02
    )
    return rsi_neutral or ma_flat


def opposes_reference(reference_trend: str, direction: str) -> bool:
    return (reference_trend == BULLISH and direction == BEARISH) or (
        reference_trend == BEARISH and direction == BULLISH
    )


class CounterTrendEvaluator:
    """Apply the counter-trend gates and multipliers to a regime-adjusted score."""

    def __init__(
        self,
        store: AdaptiveStore,
        settings: Optional[CounterTrendSettings] = None,
        min_signal_probability: Optional[float] = None,
    ) -> None:
        self.store = store
        self.settings = settings or store.settings.counter_trend
        if min_signal_probability is None:
            min_signal_probability = store.settings.min_signal_probability
        self.min_signal_probability = float(min_signal_probability)

    def _reject(self, reason: str, symbol: str, **details: Any) -> CounterTrendOutcome:
        logger.info("[%s] counter-trend rejected: %s", symbol, reason)
        return CounterTrendOutcome(
            score=0.0,
            is_counter_trend=True,
            rejected=True,
            reason=reason,
            details={"type": "counter_trend", "rejected": True, "reason": reason, **details},
        )

    def evaluate(
        self,
        symbol: str,
        score: float,
        correlation: Optional[CorrelationSignal],
        direction: str,
        timeframe: str,
        indicators: IndicatorBundle,
        patterns: PatternBundle,
    ) -> CounterTrendOutcome:
        if correlation is None or correlation.alignment != AGAINST:
            return CounterTrendOutcome(score=score, details={"type": "normal"})

        if not opposes_reference(correlation.reference_trend, direction):
            bonus = score * self.settings.aligned_bonus_pct
            return CounterTrendOutcome(
                score=score + bonus,
                bonus=bonus,
                details={"type": "aligned", "actual_alignment": ALIGNED, "alignment_bonus": bonus},
            )

        cfg = self.settings
        store = self.store
        # Check-then-increment of the daily counter must not interleave.
        with store.lock:
            store.roll_day()
            state = store.counter_trend_snapshot()
            if state.approved_today >= cfg.max_per_day:
                return self._reject(
                    f"daily limit reached ({state.approved_today}/{cfg.max_per_day})", symbol
                )
            if state.last_approval_time is not None:
                elapsed = store.now() - state.last_approval_time
                if elapsed < cfg.cooldown_seconds:
                    remaining = int(-(-(cfg.cooldown_seconds - elapsed) // 60))
                    return self._reject(f"cooldown active ({remaining}m remaining)", symbol)

            details: Dict[str, Any] = {
                "type": "counter_trend",
                "reference_trend": correlation.reference_trend,
                "reference_strength": correlation.strength,
            }
            strength = calculate_reversal_strength(indicators, patterns, cfg)
            details["reversal_strength"] = strength
            if strength < cfg.min_reversal_strength:
                return self._reject(
                    f"weak reversal ({strength:.1f} < {cfg.min_reversal_strength:.1f})",
                    symbol,
                    reversal_strength=strength,
                )

            adjusted = score
            if strength >= cfg.extreme_reversal_threshold:
                adjusted *= cfg.bonus_extreme_reversal
                details["reversal_type"] = "EXTREME"
            elif strength >= cfg.strong_reversal_threshold:
                adjusted *= cfg.bonus_strong_reversal
                details["reversal_type"] = "STRONG"
            else:
                adjusted *= cfg.penalty_weak_reversal
                details["reversal_type"] = "MODERATE"

            short_term = timeframe in cfg.short_term_timeframes
            if short_term:
                increment = adjusted * (cfg.short_term_bonus - 1)
                adjusted += increment
                details["short_term_bonus"] = increment
                rsi = safe_float(indicators.rsi)
                if rsi is not None and (
                    rsi <= cfg.min_short_term_rsi_extreme or rsi >= cfg.max_short_term_rsi_extreme
                ):
                    adjusted += cfg.short_term_rsi_bonus
                    details["extreme_rsi_bonus"] = cfg.short_term_rsi_bonus

            if cfg.require_volume_spike:
                ratio = indicators.volume_ratio()
                if ratio < cfg.min_volume_spike:
                    return self._reject(
                        f"insufficient volume spike ({ratio:.2f}x < {cfg.min_volume_spike:.2f}x)",
                        symbol,
                        reversal_strength=strength,
                        volume_ratio=ratio,
                    )
                adjusted += cfg.volume_spike_bonus
                details["volume_spike"] = {"ratio": ratio, "bonus": cfg.volume_spike_bonus}

            if patterns.has_any(cfg.reversal_patterns):
                adjusted += cfg.pattern_reversal_bonus
                details["reversal_pattern_bonus"] = cfg.pattern_reversal_bonus

            if is_sideways_breakout(indicators, patterns):
                increment = adjusted * (cfg.sideways_breakout_bonus - 1)
                adjusted += increment
                details["sideways_breakout"] = increment

            if adjusted >= self.min_signal_probability:
                count = store.record_counter_trend_approval()
                details["approved"] = True
                logger.info(
                    "[%s] counter-trend signal approved (%d/%d today)", symbol, count, cfg.max_per_day
                )
            details["counter_trend_count"] = store.counter_trend_snapshot().approved_today

        return CounterTrendOutcome(
            score=adjusted,
            is_counter_trend=True,
            bonus=adjusted - score,
            details=details,
        )


__all__ = [
    "CounterTrendOutcome",
    "CounterTrendEvaluator",
    "calculate_reversal_strength",
    "is_sideways_breakout",
    "opposes_reference",
]
