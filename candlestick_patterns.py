"""Candlestick and breakout detection producing a :class:`PatternBundle`."""
from __future__ import annotations

from typing import Dict, Optional, Tuple

import pandas as pd

from log_utils import setup_logger
from signal_types import BEARISH_BREAKOUT, BULLISH_BREAKOUT, PatternBundle

logger = setup_logger(__name__)

DOJI_TOLERANCE = 0.001
BREAKOUT_LOOKBACK = 20
BREAKOUT_VOLUME_RATIO = 1.5


def _numeric_ohlcv(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for column in ("open", "high", "low", "close", "volume"):
        if column in df.columns:
            df[column] = pd.to_numeric(df[column], errors="coerce")
    return df.dropna(subset=["open", "high", "low", "close"])


def detect_candlestick_patterns(df: pd.DataFrame) -> Dict[str, bool]:
    """Return a flag per reversal pattern for the latest candle(s)."""

    patterns = {
        "doji": False,
        "hammer": False,
        "hanging_man": False,
        "bullish_engulfing": False,
        "bearish_engulfing": False,
        "piercing_line": False,
        "morning_star": False,
        "evening_star": False,
    }
    if df is None or len(df) < 2:
        return patterns

    try:
        df = _numeric_ohlcv(df)
        if len(df) < 2:
            return patterns
        c = df.iloc[-1]
        p1 = df.iloc[-2]
        p2 = df.iloc[-3] if len(df) >= 3 else None

        body = abs(c["close"] - c["open"])
        upper_wick = c["high"] - max(c["close"], c["open"])
        lower_wick = min(c["close"], c["open"]) - c["low"]

        if body < abs(c["close"]) * DOJI_TOLERANCE:
            patterns["doji"] = True

        if body > 0 and lower_wick > 2 * body and upper_wick < 0.5 * body:
            patterns["hammer"] = True

        if body > 0 and upper_wick > 2 * body and lower_wick < 0.5 * body:
            patterns["hanging_man"] = True

        if p1["close"] < p1["open"] and c["close"] > c["open"] and c["open"] < p1["close"] and c["close"] > p1["open"]:
            patterns["bullish_engulfing"] = True

        if p1["close"] > p1["open"] and c["close"] < c["open"] and c["open"] > p1["close"] and c["close"] < p1["open"]:
            patterns["bearish_engulfing"] = True

        if p1["close"] < p1["open"] and c["close"] > c["open"] and c["close"] > (p1["open"] + p1["close"]) / 2 and c["close"] < p1["open"]:
            patterns["piercing_line"] = True

        if p2 is not None:
            if p2["close"] < p2["open"] and p1["close"] < p1["open"] and c["close"] > c["open"] and c["close"] > p1["open"]:
                patterns["morning_star"] = True
            if p2["close"] > p2["open"] and p1["close"] > p1["open"] and c["close"] < c["open"] and c["close"] < p1["open"]:
                patterns["evening_star"] = True
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Candlestick detection failed: %s", exc)
    return patterns


def candlestick_names(flags: Dict[str, bool]) -> Tuple[str, ...]:
    """Upper-case names of the patterns flagged True, in detection order."""

    return tuple(name.upper() for name, hit in flags.items() if hit)


def detect_breakout(
    df: pd.DataFrame,
    lookback: int = BREAKOUT_LOOKBACK,
    volume_ratio: float = BREAKOUT_VOLUME_RATIO,
) -> Optional[str]:
    """Classify a volume-confirmed break of the prior ``lookback`` range.

    The latest close must cross the previous range high (or low) on this
    bar and trade on volume above ``volume_ratio`` times the range average.
    """

    if df is None or len(df) < lookback + 2:
        return None
    df = _numeric_ohlcv(df)
    if len(df) < lookback + 2:
        return None
    window = df.iloc[-(lookback + 1):-1]
    resistance = float(window["high"].max())
    support = float(window["low"].min())
    current = float(df["close"].iloc[-1])
    previous = float(df["close"].iloc[-2])

    if "volume" in df.columns and df["volume"].notna().all():
        volume = float(df["volume"].iloc[-1])
        average = float(window["volume"].mean())
        confirmed = average > 0 and volume > average * volume_ratio
    else:
        confirmed = False
    if not confirmed:
        return None

    if current > resistance and previous <= resistance:
        return BULLISH_BREAKOUT
    if current < support and previous >= support:
        return BEARISH_BREAKOUT
    return None


def build_pattern_bundle(df: pd.DataFrame) -> PatternBundle:
    """Pattern provider used by the scanner."""

    return PatternBundle(
        breakout=detect_breakout(df),
        candlestick=candlestick_names(detect_candlestick_patterns(df)),
    )


__all__ = [
    "detect_candlestick_patterns",
    "candlestick_names",
    "detect_breakout",
    "build_pattern_bundle",
]
