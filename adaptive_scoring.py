"""
Adaptive scoring engine.

``AdaptiveScoringEngine.evaluate`` runs the full pipeline for one
(symbol, timeframe) snapshot:

1. blacklist short-circuit,
2. market regime classification,
3. base score from the weighted rules,
4. symbol reputation multiplier,
5. regime adjustment,
6. counter-trend gating,
7. clamp to [0, 100] and comparison against the dynamic threshold.

Learned state lives in an :class:`AdaptiveStore` passed in by the caller, so
a test can build a fresh engine and store without touching globals.
"""
from __future__ import annotations

import random
from typing import Any, Dict, Iterable, List, Mapping, Optional

from adaptive_store import AdaptiveStore
from base_score import calculate_base_score
from config import ScoringSettings, load_scoring_settings
from counter_trend import CounterTrendEvaluator
from dynamic_threshold import calculate_dynamic_threshold
from log_utils import setup_logger
from market_regime import apply_regime_adjustment, classify_market_regime
from signal_types import (
    NEUTRAL,
    CorrelationSignal,
    IndicatorBundle,
    PatternBundle,
    ScoringResult,
)

logger = setup_logger(__name__)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    if value != value:
        return low
    return max(low, min(high, value))


class AdaptiveScoringEngine:
    """Public face of the scoring pipeline and its learned state."""

    def __init__(
        self,
        store: Optional[AdaptiveStore] = None,
        settings: Optional[ScoringSettings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if store is None:
            store = AdaptiveStore(settings or load_scoring_settings())
        self.store = store
        self.settings = store.settings
        self.counter_trend = CounterTrendEvaluator(store)
        self._rng = rng

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def evaluate(
        self,
        symbol: str,
        timeframe: str,
        indicators: IndicatorBundle,
        patterns: PatternBundle,
        ml_probability: Optional[float] = None,
        signal_direction: str = NEUTRAL,
        correlation: Optional[CorrelationSignal] = None,
    ) -> ScoringResult:
        """Score one snapshot.  Never raises; failures yield an all-zero result."""

        try:
            return self._evaluate(
                symbol, timeframe, indicators, patterns, ml_probability, signal_direction, correlation
            )
        except Exception:
            logger.exception("Scoring failed for %s %s", symbol, timeframe)
            return ScoringResult(
                total_score=0.0,
                is_valid=False,
                reason="evaluation error",
                breakdown={"error": True},
            )

    def _evaluate(
        self,
        symbol: str,
        timeframe: str,
        indicators: IndicatorBundle,
        patterns: PatternBundle,
        ml_probability: Optional[float],
        signal_direction: str,
        correlation: Optional[CorrelationSignal],
    ) -> ScoringResult:
        store = self.store
        if store.is_blacklisted(symbol):
            logger.debug("[%s] skipped: symbol is blacklisted", symbol)
            return ScoringResult(
                total_score=0.0,
                is_valid=False,
                reason="symbol blacklisted",
                breakdown={"blacklisted": True},
            )
        store.roll_day()

        indicators = indicators or IndicatorBundle()
        patterns = patterns or PatternBundle()

        regime = classify_market_regime(indicators, patterns)
        store.set_market_regime(regime)

        base = calculate_base_score(store, indicators, patterns, ml_probability, correlation, self._rng)

        multiplier = store.symbol_multiplier(symbol)
        adjusted = base.total * multiplier

        adjusted, regime_delta, regime_details = apply_regime_adjustment(adjusted, regime, signal_direction)

        outcome = self.counter_trend.evaluate(
            symbol, adjusted, correlation, signal_direction, timeframe, indicators, patterns
        )

        threshold = self.current_threshold()
        final = _clamp(outcome.score)
        is_valid = not outcome.rejected and final >= threshold

        breakdown: Dict[str, Any] = {
            "base_score": base.total,
            "base_details": base.details,
            "indicators_fired": list(base.fired),
            "symbol_multiplier": multiplier,
            "regime": regime,
            "regime_adjustment": regime_delta,
            "regime_details": regime_details,
            "counter_trend_adjustment": outcome.bonus,
            "counter_trend_details": outcome.details,
            "symbol_performance": store.symbol_stats(symbol),
        }

        reason = outcome.reason
        if reason is None and not is_valid:
            reason = f"score {final:.1f} below threshold {threshold:.1f}"

        logger.debug(
            "[%s %s] score %.1f/%.1f regime=%s valid=%s",
            symbol,
            timeframe,
            final,
            threshold,
            regime,
            is_valid,
        )
        return ScoringResult(
            total_score=final,
            is_valid=is_valid,
            is_counter_trend=outcome.is_counter_trend,
            threshold=threshold,
            reason=reason,
            breakdown=breakdown,
        )

    # ------------------------------------------------------------------
    # Learning and maintenance
    # ------------------------------------------------------------------
    def record_trade_result(
        self,
        symbol: str,
        indicators_used: Iterable[str] | Mapping[str, object] | None,
        is_win: bool,
        final_pnl: float | None,
    ) -> None:
        self.store.record_trade_result(symbol, indicators_used, is_win, final_pnl)

    def refresh_weights(self) -> Dict[str, Dict[str, float]]:
        """Run one reweighting step; called once per scanner pass."""

        return self.store.reweight()

    def get_blacklisted_symbols(self) -> List[Dict[str, Any]]:
        now = self.store.now()
        return [
            {
                "symbol": entry.symbol,
                "reason": entry.reason,
                "created_at": entry.created_at,
                "expires_at": entry.expires_at,
                "expires_in_hours": max(0, int(-(-(entry.expires_at - now) // 3600))),
            }
            for entry in self.store.get_blacklisted_symbols()
        ]

    def remove_from_blacklist(self, symbol: str) -> bool:
        return self.store.remove_from_blacklist(symbol)

    def get_indicator_performance_report(self) -> Dict[str, Dict[str, str]]:
        return self.store.indicator_performance_report()

    def reset_adaptive_system(self) -> None:
        self.store.reset()

    # ------------------------------------------------------------------
    # Threshold bookkeeping
    # ------------------------------------------------------------------
    def current_threshold(self) -> float:
        return calculate_dynamic_threshold(
            self.store.last_accepted_reference(), self.store.now(), self.settings.thresholds
        )

    def mark_signal_accepted(self, when: Optional[float] = None) -> float:
        return self.store.mark_signal_accepted(when)

    @property
    def market_regime(self) -> str:
        return self.store.get_market_regime()


__all__ = ["AdaptiveScoringEngine"]
