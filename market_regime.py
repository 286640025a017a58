"""Coarse market regime classification and the matching score adjustment."""
from __future__ import annotations

from typing import Any, Dict, Tuple

from signal_types import (
    BEAR,
    BEARISH,
    BULL,
    BULLISH,
    NORMAL,
    VOLATILE,
    IndicatorBundle,
    PatternBundle,
    safe_float,
)


def regime_votes(indicators: IndicatorBundle, patterns: PatternBundle) -> Dict[str, int]:
    """Tally bullish, bearish and volatility votes for one snapshot."""

    votes = {"bullish": 0, "bearish": 0, "volatility": 0}

    ma_short = safe_float(indicators.ma_short)
    ma_long = safe_float(indicators.ma_long)
    if ma_short is not None and ma_long is not None and ma_long != 0:
        if ma_short > ma_long * 1.05:
            votes["bullish"] += 1
        if ma_short < ma_long * 0.95:
            votes["bearish"] += 1

    rsi = safe_float(indicators.rsi)
    if rsi is not None:
        if rsi < 20 or rsi > 80:
            votes["volatility"] += 1
        if rsi > 65:
            votes["bullish"] += 1
        if rsi < 35:
            votes["bearish"] += 1

    macd = indicators.macd
    if macd is not None:
        line = safe_float(macd.line)
        signal = safe_float(macd.signal)
        if line is not None and signal is not None:
            if line > signal:
                votes["bullish"] += 1
            else:
                votes["bearish"] += 1

    if patterns.breakout:
        votes["volatility"] += 1

    return votes


def classify_market_regime(indicators: IndicatorBundle, patterns: PatternBundle) -> str:
    """Return BULL, BEAR, VOLATILE or NORMAL.

    Two or more volatility votes win outright; otherwise one side needs a
    lead of at least two votes, and anything closer is NORMAL.
    """

    votes = regime_votes(indicators, patterns)
    if votes["volatility"] >= 2:
        return VOLATILE
    if votes["bullish"] > votes["bearish"] + 1:
        return BULL
    if votes["bearish"] > votes["bullish"] + 1:
        return BEAR
    return NORMAL


def apply_regime_adjustment(score: float, regime: str, direction: str) -> Tuple[float, float, Dict[str, Any]]:
    """Adjust ``score`` for ``regime`` and return ``(score, delta, details)``.

    The bull and bear branches are asymmetric: a bear market
    rewards aligned shorts more (+25 %) and punishes longs harder (-20 %)
    than a bull market treats the mirror case (+20 % / -15 %).
    """

    details: Dict[str, Any] = {"regime": regime}
    delta = 0.0
    if regime == BULL:
        if direction == BULLISH:
            delta = score * 0.20
            details["bull_market_bonus"] = delta
        else:
            delta = -score * 0.15
            details["bull_market_penalty"] = delta
    elif regime == BEAR:
        if direction == BEARISH:
            delta = score * 0.25
            details["bear_market_bonus"] = delta
        else:
            delta = -score * 0.20
            details["bear_market_penalty"] = delta
    elif regime == VOLATILE:
        if score >= 30:
            delta = 12.0
            details["volatile_market_bonus"] = delta
    elif score > 20:
        delta = 8.0
        details["normal_market_bonus"] = delta
    return score + delta, delta, details


__all__ = ["regime_votes", "classify_market_regime", "apply_regime_adjustment"]
