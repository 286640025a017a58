"""Base score calculation from an indicator/pattern/ML/correlation snapshot."""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from adaptive_store import AdaptiveStore
from signal_types import (
    BULLISH_BREAKOUT,
    NEUTRAL,
    CorrelationSignal,
    IndicatorBundle,
    PatternBundle,
    safe_float,
)


@dataclass
class BaseScore:
    """Unclamped weighted score plus per-rule details."""

    total: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)
    fired: List[str] = field(default_factory=list)

    def add(self, store: AdaptiveStore, indicator: str, key: str, score: float, **extra: Any) -> None:
        self.total += score
        self.details[key] = {"indicator": indicator, "score": score, **extra}
        self.fired.append(indicator)
        store.record_usage(indicator, score)


def calculate_base_score(
    store: AdaptiveStore,
    indicators: IndicatorBundle,
    patterns: PatternBundle,
    ml_probability: Optional[float],
    correlation: Optional[CorrelationSignal],
    rng: Optional[random.Random] = None,
) -> BaseScore:
    """Apply every additive scoring rule using the store's current weights.

    Each rule reads only its own inputs and is skipped when any of them is
    missing or non-finite.  Every rule that fires records a usage of its
    indicator in ``store``.
    """

    settings = store.settings
    weights = store.weights_snapshot()
    result = BaseScore()

    rsi = safe_float(indicators.rsi)
    if rsi is not None:
        if rsi < settings.rsi_oversold:
            score = weights.get("RSI_OVERSOLD", 0.0) + (settings.rsi_oversold - rsi) * settings.rsi_scale
            result.add(store, "RSI_OVERSOLD", "rsi", score, value=rsi, reason="oversold")
        elif rsi > settings.rsi_overbought:
            score = abs(weights.get("RSI_OVERBOUGHT", 0.0)) + (rsi - settings.rsi_overbought) * settings.rsi_scale
            result.add(store, "RSI_OVERBOUGHT", "rsi", score, value=rsi, reason="overbought")

    macd = indicators.macd
    if macd is not None:
        line = safe_float(macd.line)
        signal = safe_float(macd.signal)
        if line is not None and signal is not None:
            histogram = safe_float(macd.histogram)
            strength = abs(histogram) * settings.macd_strength_scale if histogram is not None else 0.0
            bonus = min(settings.macd_bonus_cap, strength * settings.macd_bonus_multiplier)
            if line > signal:
                score = weights.get("MACD_BULLISH", 0.0) + bonus
                result.add(store, "MACD_BULLISH", "macd", score, strength=strength, reason="bullish crossover")
            else:
                score = abs(weights.get("MACD_BEARISH", 0.0)) + bonus
                result.add(store, "MACD_BEARISH", "macd", score, strength=strength, reason="bearish crossover")

    ichimoku = indicators.ichimoku
    if ichimoku is not None:
        conversion = safe_float(ichimoku.conversion_line)
        base = safe_float(ichimoku.base_line)
        if conversion is not None and base is not None and conversion > base:
            result.add(store, "ICHIMOKU_BULLISH", "ichimoku", weights.get("ICHIMOKU_BULLISH", 0.0))

    if indicators.rsi_divergence is True:
        result.add(store, "RSI_DIVERGENCE", "rsi_divergence", weights.get("RSI_DIVERGENCE", 0.0))

    ma_short = safe_float(indicators.ma_short)
    ma_long = safe_float(indicators.ma_long)
    if ma_short is not None and ma_long is not None and ma_short > ma_long:
        result.add(store, "MA_BULLISH", "moving_averages", weights.get("MA_BULLISH", 0.0))

    if patterns.breakout == BULLISH_BREAKOUT:
        result.add(store, "PATTERN_BREAKOUT", "breakout", weights.get("PATTERN_BREAKOUT", 0.0))

    volume = safe_float(indicators.current_volume)
    volume_ma = safe_float(indicators.volume_ma)
    if (
        volume is not None
        and volume_ma is not None
        and volume_ma > 0
        and volume > volume_ma * settings.volume_confirmation_ratio
    ):
        result.add(
            store,
            "VOLUME_CONFIRMATION",
            "volume",
            weights.get("VOLUME_CONFIRMATION", 0.0),
            ratio=volume / volume_ma,
        )

    probability = safe_float(ml_probability)
    if probability is not None:
        probability = min(1.0, max(0.0, probability))
        score = probability * weights.get("ML_WEIGHT", 0.0) * 100
        result.add(store, "ML_WEIGHT", "machine_learning", score, probability=probability)

    if correlation is not None and correlation.alignment != NEUTRAL:
        bonus = safe_float(correlation.bonus) or 0.0
        result.add(
            store,
            "BTC_CORRELATION",
            "reference_correlation",
            bonus,
            trend=correlation.reference_trend,
            strength=correlation.strength,
            alignment=correlation.alignment,
        )

    if settings.jitter_pct > 0:
        rng = rng or random.Random()
        jitter = rng.uniform(-1.0, 1.0) * settings.jitter_pct * abs(result.total)
        result.total += jitter
        result.details["jitter"] = jitter

    return result


__all__ = ["BaseScore", "calculate_base_score"]
