"""Central configuration loader for environment variables."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Tuple

from dotenv import load_dotenv

# Load environment variables once when this module is imported.
load_dotenv()

import json
import os


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------
def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        return float(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return int(default)


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or default


# ---------------------------------------------------------------------------
# Scoring weights
# ---------------------------------------------------------------------------

# Initial indicator weights.  Bearish/overbought weights are stored negative
# and applied by absolute value so a short setup scores like a long one.
DEFAULT_WEIGHTS: Dict[str, float] = {
    "RSI_OVERSOLD": 25.0,
    "RSI_OVERBOUGHT": -25.0,
    "MACD_BULLISH": 30.0,
    "MACD_BEARISH": -30.0,
    "ICHIMOKU_BULLISH": 20.0,
    "RSI_DIVERGENCE": 15.0,
    "MA_BULLISH": 15.0,
    "BOLLINGER_BREAKOUT": 15.0,
    "PATTERN_BREAKOUT": 25.0,
    "PATTERN_REVERSAL": 20.0,
    "VOLUME_CONFIRMATION": 20.0,
    "ML_WEIGHT": 0.25,
    "BTC_CORRELATION": 0.0,
}

DEFAULT_TIMEFRAMES: Tuple[str, ...] = ("5m", "15m", "1h", "4h", "1d")

DEFAULT_REVERSAL_PATTERNS: Tuple[str, ...] = (
    "HAMMER",
    "HANGING_MAN",
    "BULLISH_ENGULFING",
    "BEARISH_ENGULFING",
    "DOJI",
)


def _parse_weight_overrides() -> Dict[str, float]:
    raw = os.getenv("SCORING_WEIGHTS")
    overrides: Dict[str, float] = {}
    if not raw:
        return overrides
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return overrides
    if isinstance(data, Mapping):
        for key, value in data.items():
            try:
                overrides[str(key).upper()] = float(value)
            except (TypeError, ValueError):
                continue
    return overrides


# ---------------------------------------------------------------------------
# Settings dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CounterTrendSettings:
    """Gates and multipliers applied to signals that fight the BTC trend."""

    min_reversal_strength: float = 45.0
    extreme_reversal_threshold: float = 95.0
    strong_reversal_threshold: float = 55.0
    penalty_weak_reversal: float = 0.3
    bonus_strong_reversal: float = 1.05
    bonus_extreme_reversal: float = 1.15
    sideways_breakout_bonus: float = 1.25
    max_per_day: int = 3
    cooldown_seconds: float = 4 * 60 * 60
    short_term_timeframes: Tuple[str, ...] = ("5m", "15m")
    short_term_bonus: float = 1.20
    min_short_term_rsi_extreme: float = 15.0
    max_short_term_rsi_extreme: float = 85.0
    short_term_rsi_bonus: float = 15.0
    require_volume_spike: bool = True
    min_volume_spike: float = 2.0
    volume_spike_bonus: float = 10.0
    pattern_reversal_bonus: float = 20.0
    aligned_bonus_pct: float = 0.15
    reversal_patterns: Tuple[str, ...] = DEFAULT_REVERSAL_PATTERNS


@dataclass(frozen=True)
class ThresholdSettings:
    """Anti-starvation tiers for the minimum acceptable score."""

    default: float = 70.0
    fallback: float = 60.0
    emergency: float = 50.0
    fallback_after_minutes: float = 90.0
    emergency_after_minutes: float = 120.0


@dataclass(frozen=True)
class ScoringSettings:
    """Runtime knobs for the adaptive scoring engine."""

    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    min_trades_for_adjustment: int = 10
    adjustment_factor: float = 0.1
    blacklist_threshold: float = 0.3
    blacklist_min_trades: int = 10
    blacklist_duration_seconds: float = 24 * 60 * 60
    symbol_min_trades: int = 5
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    rsi_scale: float = 0.5
    macd_strength_scale: float = 1e6
    macd_bonus_multiplier: float = 2.0
    macd_bonus_cap: float = 10.0
    volume_confirmation_ratio: float = 1.5
    jitter_pct: float = 0.0
    min_signal_probability: float = 70.0
    counter_trend: CounterTrendSettings = field(default_factory=CounterTrendSettings)
    thresholds: ThresholdSettings = field(default_factory=ThresholdSettings)


@dataclass(frozen=True)
class SelectionSettings:
    """Best-of selection window and quality-score bonuses."""

    # minute of the UTC hour
    window_start_minute: int = 55
    aligned_bonus: float = 10.0
    against_penalty: float = 10.0
    regime_alignment_bonus: float = 5.0
    timeframe_bonus: Dict[str, float] = field(
        default_factory=lambda: {"5m": 0.0, "15m": 2.0, "1h": 5.0, "4h": 7.0, "1d": 10.0}
    )


@dataclass(frozen=True)
class ScannerSettings:
    """Scheduling knobs for the per-pair evaluation loop."""

    symbols: Tuple[str, ...] = ("BTC/USDT", "ETH/USDT")
    timeframes: Tuple[str, ...] = DEFAULT_TIMEFRAMES
    pair_timeout_seconds: float = 30.0
    max_concurrency: int = 1
    pair_pause_seconds: float = 0.0
    scan_interval_seconds: float = 300.0
    min_candles: int = 50
    selection: SelectionSettings = field(default_factory=SelectionSettings)


def load_counter_trend_settings() -> CounterTrendSettings:
    """Load counter-trend gating from environment variables."""

    defaults = CounterTrendSettings()
    return CounterTrendSettings(
        min_reversal_strength=_env_float("CT_MIN_REVERSAL_STRENGTH", defaults.min_reversal_strength),
        extreme_reversal_threshold=_env_float(
            "CT_EXTREME_REVERSAL_THRESHOLD", defaults.extreme_reversal_threshold
        ),
        strong_reversal_threshold=_env_float(
            "CT_STRONG_REVERSAL_THRESHOLD", defaults.strong_reversal_threshold
        ),
        penalty_weak_reversal=_env_float("CT_PENALTY_WEAK_REVERSAL", defaults.penalty_weak_reversal),
        bonus_strong_reversal=_env_float("CT_BONUS_STRONG_REVERSAL", defaults.bonus_strong_reversal),
        bonus_extreme_reversal=_env_float("CT_BONUS_EXTREME_REVERSAL", defaults.bonus_extreme_reversal),
        sideways_breakout_bonus=_env_float(
            "CT_SIDEWAYS_BREAKOUT_BONUS", defaults.sideways_breakout_bonus
        ),
        max_per_day=max(0, _env_int("CT_MAX_PER_DAY", defaults.max_per_day)),
        cooldown_seconds=max(0.0, _env_float("CT_COOLDOWN_SECONDS", defaults.cooldown_seconds)),
        short_term_timeframes=_env_list("CT_SHORT_TERM_TIMEFRAMES", defaults.short_term_timeframes),
        short_term_bonus=_env_float("CT_SHORT_TERM_BONUS", defaults.short_term_bonus),
        min_short_term_rsi_extreme=_env_float(
            "CT_MIN_SHORT_TERM_RSI_EXTREME", defaults.min_short_term_rsi_extreme
        ),
        max_short_term_rsi_extreme=_env_float(
            "CT_MAX_SHORT_TERM_RSI_EXTREME", defaults.max_short_term_rsi_extreme
        ),
        short_term_rsi_bonus=_env_float("CT_SHORT_TERM_RSI_BONUS", defaults.short_term_rsi_bonus),
        require_volume_spike=_env_bool("CT_REQUIRE_VOLUME_SPIKE", defaults.require_volume_spike),
        min_volume_spike=_env_float("CT_MIN_VOLUME_SPIKE", defaults.min_volume_spike),
        volume_spike_bonus=_env_float("CT_VOLUME_SPIKE_BONUS", defaults.volume_spike_bonus),
        pattern_reversal_bonus=_env_float("CT_PATTERN_REVERSAL_BONUS", defaults.pattern_reversal_bonus),
    )


def load_threshold_settings() -> ThresholdSettings:
    """Load the dynamic-threshold tiers and breakpoints."""

    defaults = ThresholdSettings()
    return ThresholdSettings(
        default=_env_float("MIN_SIGNAL_PROBABILITY", defaults.default),
        fallback=_env_float("THRESH_AFTER_90M", defaults.fallback),
        emergency=_env_float("THRESH_AFTER_120M", defaults.emergency),
        fallback_after_minutes=_env_float("THRESH_FALLBACK_AFTER_MINUTES", defaults.fallback_after_minutes),
        emergency_after_minutes=_env_float(
            "THRESH_EMERGENCY_AFTER_MINUTES", defaults.emergency_after_minutes
        ),
    )


def load_scoring_settings() -> ScoringSettings:
    """Load scoring settings for the adaptive engine from environment variables."""

    defaults = ScoringSettings()
    weights = dict(DEFAULT_WEIGHTS)
    weights.update(_parse_weight_overrides())
    return ScoringSettings(
        weights=weights,
        min_trades_for_adjustment=max(1, _env_int("MIN_TRADES_FOR_ADJUSTMENT", defaults.min_trades_for_adjustment)),
        adjustment_factor=_env_float("WEIGHT_ADJUSTMENT_FACTOR", defaults.adjustment_factor),
        blacklist_threshold=_env_float("BLACKLIST_THRESHOLD", defaults.blacklist_threshold),
        blacklist_min_trades=max(1, _env_int("BLACKLIST_MIN_TRADES", defaults.blacklist_min_trades)),
        blacklist_duration_seconds=max(
            0.0, _env_float("BLACKLIST_DURATION_SECONDS", defaults.blacklist_duration_seconds)
        ),
        volume_confirmation_ratio=_env_float("VOLUME_CONFIRMATION_RATIO", defaults.volume_confirmation_ratio),
        jitter_pct=max(0.0, _env_float("SCORING_JITTER_PCT", defaults.jitter_pct)),
        min_signal_probability=_env_float("MIN_SIGNAL_PROBABILITY", defaults.min_signal_probability),
        counter_trend=load_counter_trend_settings(),
        thresholds=load_threshold_settings(),
    )


def load_scanner_settings() -> ScannerSettings:
    """Load scanner scheduling settings from environment variables."""

    defaults = ScannerSettings()
    selection_defaults = SelectionSettings()
    selection = SelectionSettings(
        window_start_minute=min(59, max(0, _env_int("SELECTION_WINDOW_MINUTE", selection_defaults.window_start_minute))),
        aligned_bonus=_env_float("QUALITY_ALIGNED_BONUS", selection_defaults.aligned_bonus),
        against_penalty=_env_float("QUALITY_AGAINST_PENALTY", selection_defaults.against_penalty),
        regime_alignment_bonus=_env_float(
            "QUALITY_REGIME_ALIGNMENT_BONUS", selection_defaults.regime_alignment_bonus
        ),
    )
    return ScannerSettings(
        symbols=_env_list("SCAN_SYMBOLS", defaults.symbols),
        timeframes=_env_list("SCAN_TIMEFRAMES", defaults.timeframes),
        pair_timeout_seconds=max(1.0, _env_float("PAIR_TIMEOUT_SECONDS", defaults.pair_timeout_seconds)),
        max_concurrency=max(1, _env_int("SCAN_MAX_CONCURRENCY", defaults.max_concurrency)),
        pair_pause_seconds=max(0.0, _env_float("PAIR_PAUSE_SECONDS", defaults.pair_pause_seconds)),
        scan_interval_seconds=max(5.0, _env_float("SCAN_INTERVAL_SECONDS", defaults.scan_interval_seconds)),
        min_candles=max(1, _env_int("SCAN_MIN_CANDLES", defaults.min_candles)),
        selection=selection,
    )


__all__ = [
    "DEFAULT_WEIGHTS",
    "DEFAULT_TIMEFRAMES",
    "DEFAULT_REVERSAL_PATTERNS",
    "CounterTrendSettings",
    "ThresholdSettings",
    "ScoringSettings",
    "SelectionSettings",
    "ScannerSettings",
    "load_counter_trend_settings",
    "load_threshold_settings",
    "load_scoring_settings",
    "load_scanner_settings",
]
