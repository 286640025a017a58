"""
Correlation of candidates with the reference asset (BTC).

The estimator analyses the reference asset once per cache window (15 minutes
by default): trend direction, trend strength on a 0-100 scale and its recent
closes.  Each candidate is then classified as ALIGNED with, AGAINST or
NEUTRAL to that trend, and the alignment table turns that into a signed
score contribution.

Any failure degrades to :func:`signal_types.neutral_correlation`, so a
broken data feed never blocks scoring.
"""
from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Callable, Optional

import numpy as np
import pandas as pd

from async_utils import call_maybe_async
from log_utils import setup_logger
from signal_types import (
    AGAINST,
    ALIGNED,
    BEARISH,
    BULLISH,
    NEUTRAL,
    CorrelationSignal,
    IndicatorBundle,
    MacdReading,
    neutral_correlation,
    safe_float,
)
from technical_indicators import build_indicator_bundle, detect_market_trend

logger = setup_logger(__name__)

REFERENCE_SYMBOL = "BTC/USDT"
REFERENCE_TIMEFRAME = "1h"
CACHE_SECONDS = 15 * 60
MIN_REFERENCE_CANDLES = 50
CORRELATION_WINDOW = 20


@dataclass(frozen=True)
class ReferenceAnalysis:
    trend: str
    strength: float
    price: float
    closes: pd.Series
    timestamp: float


def calculate_trend_strength(indicators: IndicatorBundle, volume: Optional[pd.Series] = None) -> float:
    """Return the reference trend strength, starting from a neutral 50."""

    strength = 50.0

    rsi = safe_float(indicators.rsi)
    if rsi is not None:
        if rsi > 70:
            strength += 20
        elif rsi > 60:
            strength += 15
        elif rsi < 30:
            strength += 20
        elif rsi < 40:
            strength -= 15

    macd = indicators.macd or MacdReading()
    line = safe_float(macd.line)
    signal = safe_float(macd.signal)
    if line is not None and signal is not None:
        diff = line - signal
        if diff > 0:
            strength += min(20.0, diff * 1000)
        else:
            strength += max(-20.0, diff * 1000)

    ma_short = safe_float(indicators.ma_short)
    ma_long = safe_float(indicators.ma_long)
    if ma_short is not None and ma_long:
        spread = (ma_short - ma_long) / ma_long * 100
        if spread > 2:
            strength += 25
        elif spread > 0.5:
            strength += 15
        elif spread < -2:
            strength -= 25
        elif spread < -0.5:
            strength -= 15

    if volume is not None and len(volume) >= 20:
        average = float(volume.tail(20).mean())
        if average > 0:
            ratio = float(volume.iloc[-1]) / average
            if ratio > 1.5:
                strength += 10
            elif ratio < 0.7:
                strength -= 5

    return float(round(max(0.0, min(100.0, strength))))


def returns_correlation(reference: pd.Series, asset: pd.Series, window: int = CORRELATION_WINDOW) -> float:
    """Pearson correlation of log returns over the last ``window`` closes."""

    if reference is None or asset is None or len(reference) < window or len(asset) < window:
        return 0.0
    ref = np.log1p(pd.to_numeric(reference, errors="coerce").tail(window).reset_index(drop=True).pct_change())
    other = np.log1p(pd.to_numeric(asset, errors="coerce").tail(window).reset_index(drop=True).pct_change())
    frame = pd.DataFrame({"ref": ref, "asset": other}).replace([np.inf, -np.inf], np.nan).dropna()
    if len(frame) < 2:
        return 0.0
    value = safe_float(frame["ref"].corr(frame["asset"]))
    return 0.0 if value is None else value


def analyze_trend_alignment(direction: str, reference_trend: str, strength: float) -> CorrelationSignal:
    """Map candidate direction against the reference trend to a signed bonus."""

    strong = strength > 80
    moderate = strength > 60
    if reference_trend in (BULLISH, BEARISH) and direction == reference_trend:
        bonus = 25.0 if strong else 15.0 if moderate else 10.0
        side = "long" if reference_trend == BULLISH else "short"
        return CorrelationSignal(
            reference_trend=reference_trend,
            strength=strength,
            alignment=ALIGNED,
            bonus=bonus,
            recommendation=f"reference {reference_trend.lower()} trend favours {side} entries",
        )
    if (reference_trend == BULLISH and direction == BEARISH) or (
        reference_trend == BEARISH and direction == BULLISH
    ):
        penalty = -30.0 if strong else -20.0 if moderate else -10.0
        return CorrelationSignal(
            reference_trend=reference_trend,
            strength=strength,
            alignment=AGAINST,
            bonus=penalty,
            recommendation=f"reference trend is {reference_trend.lower()}; entry fights it",
        )
    return CorrelationSignal(
        reference_trend=reference_trend,
        strength=strength,
        alignment=NEUTRAL,
        recommendation="neutral correlation; technical analysis prevails",
    )


class ReferenceCorrelationEstimator:
    """Correlation estimator consumed by the scanner.

    ``fetch_ohlcv(symbol, timeframe)`` may be sync or async and must return a
    pandas OHLCV frame.
    """

    def __init__(
        self,
        fetch_ohlcv: Callable[..., Any],
        reference_symbol: str = REFERENCE_SYMBOL,
        timeframe: str = REFERENCE_TIMEFRAME,
        cache_seconds: float = CACHE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetch = fetch_ohlcv
        self.reference_symbol = reference_symbol
        self.timeframe = timeframe
        self.cache_seconds = cache_seconds
        self._clock = clock
        self._cache: Optional[ReferenceAnalysis] = None

    def clear_cache(self) -> None:
        self._cache = None

    async def reference_analysis(self) -> Optional[ReferenceAnalysis]:
        now = self._clock()
        cached = self._cache
        if cached is not None and now - cached.timestamp < self.cache_seconds:
            return cached

        data = await call_maybe_async(self._fetch, self.reference_symbol, self.timeframe)
        if data is None or len(data) < MIN_REFERENCE_CANDLES:
            logger.warning("Insufficient %s data for reference analysis", self.reference_symbol)
            return None
        indicators = build_indicator_bundle(data)
        analysis = ReferenceAnalysis(
            trend=detect_market_trend(indicators),
            strength=calculate_trend_strength(indicators, data.get("volume")),
            price=float(data["close"].iloc[-1]),
            closes=data["close"].astype(float),
            timestamp=now,
        )
        self._cache = analysis
        logger.info(
            "Reference %s: %s (strength %.0f) at %.2f",
            self.reference_symbol,
            analysis.trend,
            analysis.strength,
            analysis.price,
        )
        return analysis

    async def estimate(self, symbol: str, direction: str, data: Optional[pd.DataFrame]) -> CorrelationSignal:
        try:
            analysis = await self.reference_analysis()
            if analysis is None or analysis.trend == NEUTRAL:
                return neutral_correlation("reference trend neutral; technical analysis prevails")
            signal = analyze_trend_alignment(direction, analysis.trend, analysis.strength)
            asset_closes = data["close"] if data is not None and "close" in data else None
            correlation = returns_correlation(analysis.closes, asset_closes)
            logger.debug(
                "%s vs %s: %s, correlation %.2f",
                symbol,
                self.reference_symbol,
                signal.alignment,
                correlation,
            )
            return CorrelationSignal(
                reference_trend=signal.reference_trend,
                strength=signal.strength,
                alignment=signal.alignment,
                bonus=signal.bonus,
                price_correlation=correlation,
                recommendation=signal.recommendation,
            )
        except Exception as exc:
            logger.warning("Correlation analysis failed for %s: %s", symbol, exc)
            return neutral_correlation("correlation unavailable; technical analysis only")


__all__ = [
    "ReferenceAnalysis",
    "ReferenceCorrelationEstimator",
    "analyze_trend_alignment",
    "calculate_trend_strength",
    "returns_correlation",
]
