"""Indicator provider built on pandas and ``ta``.

``build_indicator_bundle`` turns an OHLCV frame into the fixed-shape
:class:`IndicatorBundle` consumed by the scoring engine.  Columns that cannot
be computed (too few candles, bad data) come back as ``None`` so the
dependent scoring rules skip silently.
"""
from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
from ta.momentum import RSIIndicator
from ta.trend import MACD, IchimokuIndicator, SMAIndicator
from ta.volatility import BollingerBands

from log_utils import setup_logger
from signal_types import (
    BEARISH,
    BULLISH,
    NEUTRAL,
    BollingerBand,
    IchimokuReading,
    IndicatorBundle,
    MacdReading,
    PatternBundle,
    safe_float,
)

logger = setup_logger(__name__)

REQUIRED_COLUMNS = {"open", "high", "low", "close", "volume"}
DIVERGENCE_LOOKBACK = 14

BULLISH_CANDLES = {"BULLISH_ENGULFING", "MORNING_STAR", "HAMMER", "PIERCING_LINE"}
BEARISH_CANDLES = {"BEARISH_ENGULFING", "EVENING_STAR", "SHOOTING_STAR", "HANGING_MAN"}


def _last(series: Optional[pd.Series]) -> Optional[float]:
    if series is None or series.empty:
        return None
    return safe_float(series.iloc[-1])


def detect_rsi_divergence(close: pd.Series, rsi: pd.Series, lookback: int = DIVERGENCE_LOOKBACK) -> bool:
    """Return True when price and RSI disagree on the latest extreme.

    Bullish divergence: a lower price low with a higher RSI low.  Bearish
    divergence: a higher price high with a lower RSI high.  Both compare the
    latest bar against the preceding ``lookback`` bars.
    """

    frame = pd.DataFrame({"close": close, "rsi": rsi}).dropna()
    if len(frame) < lookback + 1:
        return False
    prior = frame.iloc[-(lookback + 1):-1]
    latest = frame.iloc[-1]
    if latest["close"] < prior["close"].min() and latest["rsi"] > prior["rsi"].min():
        return True
    if latest["close"] > prior["close"].max() and latest["rsi"] < prior["rsi"].max():
        return True
    return False


def build_indicator_bundle(df: pd.DataFrame) -> IndicatorBundle:
    """Compute RSI, MACD, Ichimoku, SMA21/200, Bollinger and volume SMA."""

    if df is None or df.empty:
        return IndicatorBundle()
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        logger.debug("[INDICATOR] Missing columns: %s", ", ".join(sorted(missing)))
        return IndicatorBundle()

    df = df.copy()
    for column in REQUIRED_COLUMNS:
        df[column] = pd.to_numeric(df[column], errors="coerce")
    df = df.replace([np.inf, -np.inf], np.nan).dropna(subset=["high", "low", "close"])
    if df.empty:
        return IndicatorBundle()

    close = df["close"]
    try:
        rsi_series = RSIIndicator(close, window=14).rsi()
        macd_obj = MACD(close, window_slow=26, window_fast=12, window_sign=9)
        ichimoku = IchimokuIndicator(df["high"], df["low"], window1=9, window2=26, window3=52)
        bands = BollingerBands(close, window=20, window_dev=2)
        ma_short = SMAIndicator(close, window=21).sma_indicator()
        ma_long = SMAIndicator(close, window=200).sma_indicator()
        volume_ma = df["volume"].rolling(window=20).mean()
    except (ValueError, KeyError, IndexError) as exc:
        logger.warning("[INDICATOR] failed to compute indicators: %s", exc, exc_info=True)
        return IndicatorBundle(close=_last(close), current_volume=_last(df["volume"]))

    return IndicatorBundle(
        rsi=_last(rsi_series),
        macd=MacdReading(
            line=_last(macd_obj.macd()),
            signal=_last(macd_obj.macd_signal()),
            histogram=_last(macd_obj.macd_diff()),
        ),
        ichimoku=IchimokuReading(
            conversion_line=_last(ichimoku.ichimoku_conversion_line()),
            base_line=_last(ichimoku.ichimoku_base_line()),
        ),
        ma_short=_last(ma_short),
        ma_long=_last(ma_long),
        bollinger=BollingerBand(
            upper=_last(bands.bollinger_hband()),
            middle=_last(bands.bollinger_mavg()),
            lower=_last(bands.bollinger_lband()),
        ),
        volume_ma=_last(volume_ma),
        current_volume=_last(df["volume"]),
        close=_last(close),
        rsi_divergence=detect_rsi_divergence(close, rsi_series),
    )


def detect_signal_trend(indicators: IndicatorBundle, patterns: Optional[PatternBundle] = None) -> str:
    """Vote a direction for the candidate from its own indicators.

    Each available factor counts once; a side wins with at least half of
    the factors, otherwise the direction is NEUTRAL.
    """

    bullish = bearish = factors = 0

    rsi = safe_float(indicators.rsi)
    if rsi is not None:
        factors += 1
        if rsi < 25:
            bullish += 1
        elif rsi > 85:
            bearish += 1

    histogram = safe_float(indicators.macd.histogram) if indicators.macd else None
    if histogram is not None:
        factors += 1
        if histogram > 0:
            bullish += 1
        elif histogram < 0:
            bearish += 1

    ma_short = safe_float(indicators.ma_short)
    ma_long = safe_float(indicators.ma_long)
    if ma_short is not None and ma_long is not None:
        factors += 1
        if ma_short > ma_long:
            bullish += 1
        elif ma_short < ma_long:
            bearish += 1

    band = indicators.bollinger
    close = safe_float(indicators.close)
    if band is not None and close is not None:
        upper = safe_float(band.upper)
        middle = safe_float(band.middle)
        if upper is not None and middle is not None and upper > middle:
            factors += 1
            if (close - middle) / (upper - middle) > 0.7:
                bearish += 1

    for name in (patterns.candlestick if patterns else ()):
        name = str(name).upper()
        if name in BULLISH_CANDLES:
            factors += 1
            bullish += 1
        elif name in BEARISH_CANDLES:
            factors += 1
            bearish += 1

    if factors == 0:
        return NEUTRAL
    if bullish / factors >= 0.5:
        return BULLISH
    if bearish / factors >= 0.5:
        return BEARISH
    return NEUTRAL


def detect_market_trend(indicators: IndicatorBundle) -> str:
    """Weighted trend vote used for the reference asset (MA 3, RSI 2, MACD 2, Ichimoku 1)."""

    bullish = bearish = 0

    ma_short = safe_float(indicators.ma_short)
    ma_long = safe_float(indicators.ma_long)
    if ma_short is not None and ma_long:
        spread = (ma_short - ma_long) / ma_long * 100
        if spread > 1:
            bullish += 3
        elif spread < -1:
            bearish += 3
        elif spread > 0:
            bullish += 1
        elif spread < 0:
            bearish += 1

    rsi = safe_float(indicators.rsi)
    if rsi is not None:
        if rsi > 60:
            bullish += 2
        elif rsi < 40:
            bearish += 2
        elif rsi > 50:
            bullish += 1
        elif rsi < 50:
            bearish += 1

    if indicators.macd is not None:
        line = safe_float(indicators.macd.line)
        signal = safe_float(indicators.macd.signal)
        if line is not None and signal is not None:
            if line > signal:
                bullish += 2
            else:
                bearish += 2

    if indicators.ichimoku is not None:
        conversion = safe_float(indicators.ichimoku.conversion_line)
        base = safe_float(indicators.ichimoku.base_line)
        if conversion is not None and base is not None:
            if conversion > base:
                bullish += 1
            else:
                bearish += 1

    if bullish > bearish + 1:
        return BULLISH
    if bearish > bullish + 1:
        return BEARISH
    return NEUTRAL


__all__ = [
    "build_indicator_bundle",
    "detect_rsi_divergence",
    "detect_signal_trend",
    "detect_market_trend",
]
