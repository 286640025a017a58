"""Data model shared by the scoring engine, the selector and the scanner.

Indicator and pattern inputs are fixed-shape records with optional fields
rather than free-form dictionaries: every rule that needs a value checks for
``None`` (or a non-finite number) and silently skips when it is missing.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple

__all__ = [
    "BULL",
    "BEAR",
    "VOLATILE",
    "NORMAL",
    "MARKET_REGIMES",
    "BULLISH",
    "BEARISH",
    "NEUTRAL",
    "ALIGNED",
    "AGAINST",
    "BULLISH_BREAKOUT",
    "BEARISH_BREAKOUT",
    "safe_float",
    "MacdReading",
    "IchimokuReading",
    "BollingerBand",
    "IndicatorBundle",
    "PatternBundle",
    "CorrelationSignal",
    "neutral_correlation",
    "IndicatorPerformance",
    "SymbolPerformance",
    "BlacklistEntry",
    "CounterTrendState",
    "ScoringResult",
    "Candidate",
]

# Market regimes
BULL = "BULL"
BEAR = "BEAR"
VOLATILE = "VOLATILE"
NORMAL = "NORMAL"
MARKET_REGIMES = (BULL, BEAR, VOLATILE, NORMAL)

# Trend directions (signal direction and reference-asset trend)
BULLISH = "BULLISH"
BEARISH = "BEARISH"
NEUTRAL = "NEUTRAL"

# Alignment with the reference asset; NEUTRAL is shared with directions
ALIGNED = "ALIGNED"
AGAINST = "AGAINST"

BULLISH_BREAKOUT = "BULLISH_BREAKOUT"
BEARISH_BREAKOUT = "BEARISH_BREAKOUT"


def safe_float(value: Any) -> float | None:
    """Return ``value`` as a finite float or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


@dataclass(frozen=True)
class MacdReading:
    line: Optional[float] = None
    signal: Optional[float] = None
    histogram: Optional[float] = None


@dataclass(frozen=True)
class IchimokuReading:
    conversion_line: Optional[float] = None
    base_line: Optional[float] = None


@dataclass(frozen=True)
class BollingerBand:
    upper: Optional[float] = None
    middle: Optional[float] = None
    lower: Optional[float] = None


@dataclass(frozen=True)
class IndicatorBundle:
    """Indicator snapshot for one (symbol, timeframe) evaluation."""

    rsi: Optional[float] = None
    macd: Optional[MacdReading] = None
    ichimoku: Optional[IchimokuReading] = None
    ma_short: Optional[float] = None
    ma_long: Optional[float] = None
    bollinger: Optional[BollingerBand] = None
    volume_ma: Optional[float] = None
    current_volume: Optional[float] = None
    close: Optional[float] = None
    rsi_divergence: bool = False

    def volume_ratio(self) -> float:
        """Return current volume over its moving average, ``0.0`` when unknown."""

        volume = safe_float(self.current_volume)
        average = safe_float(self.volume_ma)
        if volume is None or average is None or average <= 0:
            return 0.0
        return volume / average


@dataclass(frozen=True)
class PatternBundle:
    """Chart patterns detected on the raw candles."""

    breakout: Optional[str] = None
    candlestick: Tuple[str, ...] = ()

    def has_any(self, names: Tuple[str, ...]) -> bool:
        wanted = {name.upper() for name in names}
        return any(str(p).upper() in wanted for p in self.candlestick)


@dataclass(frozen=True)
class CorrelationSignal:
    """How a candidate relates to the reference asset (BTC) trend."""

    reference_trend: str = NEUTRAL
    strength: float = 0.0
    alignment: str = NEUTRAL
    bonus: float = 0.0
    price_correlation: float = 0.0
    recommendation: str = ""


def neutral_correlation(recommendation: str = "reference trend neutral") -> CorrelationSignal:
    """Return the neutral correlation used whenever no estimate is available."""

    return CorrelationSignal(recommendation=recommendation)


@dataclass
class IndicatorPerformance:
    trades: int = 0
    wins: int = 0
    total_impact: float = 0.0
    win_rate: float = 0.5
    avg_impact: float = 0.0


@dataclass
class SymbolPerformance:
    trades: int = 0
    wins: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    last_update: float = 0.0


@dataclass(frozen=True)
class BlacklistEntry:
    symbol: str
    reason: str
    created_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class CounterTrendState:
    approved_today: int = 0
    last_approval_time: Optional[float] = None
    day: Optional[str] = None


@dataclass
class ScoringResult:
    """Outcome of one ``AdaptiveScoringEngine.evaluate`` call."""

    total_score: float
    is_valid: bool
    is_counter_trend: bool = False
    threshold: Optional[float] = None
    reason: Optional[str] = None
    breakdown: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_score": float(self.total_score),
            "is_valid": self.is_valid,
            "is_counter_trend": self.is_counter_trend,
            "threshold": self.threshold,
            "reason": self.reason,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class Candidate:
    """A valid scoring result promoted to a candidate signal."""

    symbol: str
    timeframe: str
    entry_price: float
    probability: float
    trend: str
    indicators: IndicatorBundle
    patterns: PatternBundle
    correlation: CorrelationSignal
    regime: str
    created_at: float
    signal_id: str
    ml_probability: Optional[float] = None
    breakdown: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["breakdown"] = dict(self.breakdown)
        return payload
