import math

import pytest

from adaptive_store import AdaptiveStore
from base_score import calculate_base_score
from signal_types import (
    AGAINST,
    ALIGNED,
    BEARISH_BREAKOUT,
    BULLISH,
    BULLISH_BREAKOUT,
    BollingerBand,
    CorrelationSignal,
    IchimokuReading,
    IndicatorBundle,
    MacdReading,
    PatternBundle,
    neutral_correlation,
)


def _score(store, indicators=None, patterns=None, ml=None, correlation=None):
    return calculate_base_score(
        store,
        indicators or IndicatorBundle(),
        patterns or PatternBundle(),
        ml,
        correlation,
    )


def test_empty_inputs_score_zero(clock):
    store = AdaptiveStore(clock=clock)
    result = _score(store)
    assert result.total == 0
    assert result.fired == []
    assert store.indicator_performance_report() == {}


def test_oversold_and_bullish_macd(clock):
    store = AdaptiveStore(clock=clock)
    indicators = IndicatorBundle(rsi=20, macd=MacdReading(line=2.0, signal=1.0))

    result = _score(store, indicators)

    assert result.total == pytest.approx(25 + (30 - 20) * 0.5 + 30)
    assert result.fired == ["RSI_OVERSOLD", "MACD_BULLISH"]
    assert store.indicator_performance["RSI_OVERSOLD"].trades == 1
    assert store.indicator_performance["MACD_BULLISH"].trades == 1


def test_overbought_uses_absolute_weight(clock):
    store = AdaptiveStore(clock=clock)
    result = _score(store, IndicatorBundle(rsi=80))
    assert result.total == pytest.approx(25 + 5)
    assert result.fired == ["RSI_OVERBOUGHT"]


def test_macd_bearish_with_capped_strength_bonus(clock):
    store = AdaptiveStore(clock=clock)
    indicators = IndicatorBundle(macd=MacdReading(line=-1.0, signal=0.0, histogram=-1e-4))

    result = _score(store, indicators)

    # |histogram| * 1e6 * 2 = 200, capped at 10
    assert result.total == pytest.approx(30 + 10)
    assert result.fired == ["MACD_BEARISH"]


def test_macd_small_strength_bonus(clock):
    store = AdaptiveStore(clock=clock)
    indicators = IndicatorBundle(macd=MacdReading(line=1.0, signal=0.5, histogram=2e-6))
    assert _score(store, indicators).total == pytest.approx(30 + 4)


def test_fixed_bonuses(clock):
    store = AdaptiveStore(clock=clock)
    indicators = IndicatorBundle(
        ichimoku=IchimokuReading(conversion_line=10, base_line=9),
        rsi_divergence=True,
        ma_short=105,
        ma_long=100,
        volume_ma=100,
        current_volume=151,
    )

    result = _score(store, indicators, PatternBundle(breakout=BULLISH_BREAKOUT))

    assert result.total == pytest.approx(20 + 15 + 15 + 25 + 20)
    assert set(result.fired) == {
        "ICHIMOKU_BULLISH",
        "RSI_DIVERGENCE",
        "MA_BULLISH",
        "PATTERN_BREAKOUT",
        "VOLUME_CONFIRMATION",
    }


def test_bearish_breakout_and_weak_volume_do_not_fire(clock):
    store = AdaptiveStore(clock=clock)
    indicators = IndicatorBundle(volume_ma=100, current_volume=150)
    result = _score(store, indicators, PatternBundle(breakout=BEARISH_BREAKOUT))
    assert result.total == 0


def test_ml_probability_is_clamped(clock):
    store = AdaptiveStore(clock=clock)
    assert _score(store, ml=0.8).total == pytest.approx(20)
    assert _score(store, ml=1.7).total == pytest.approx(25)
    assert _score(store, ml=-3).total == pytest.approx(0)


def test_correlation_bonus_applies_only_when_not_neutral(clock):
    store = AdaptiveStore(clock=clock)
    aligned = CorrelationSignal(reference_trend=BULLISH, strength=85, alignment=ALIGNED, bonus=25)
    against = CorrelationSignal(reference_trend=BULLISH, strength=65, alignment=AGAINST, bonus=-20)

    assert _score(store, correlation=aligned).total == 25
    assert _score(store, correlation=against).total == -20
    assert _score(store, correlation=neutral_correlation()).total == 0


@pytest.mark.parametrize(
    "indicators",
    [
        IndicatorBundle(rsi=math.nan),
        IndicatorBundle(rsi="abc"),
        IndicatorBundle(macd=MacdReading(line=None, signal=1.0)),
        IndicatorBundle(ichimoku=IchimokuReading(conversion_line=math.inf, base_line=1)),
        IndicatorBundle(ma_short=None, ma_long=100),
        IndicatorBundle(volume_ma=0, current_volume=10),
        IndicatorBundle(bollinger=BollingerBand()),
    ],
)
def test_missing_or_malformed_inputs_skip_their_rule(clock, indicators):
    store = AdaptiveStore(clock=clock)
    result = _score(store, indicators, ml="n/a")
    assert result.total == 0
    assert result.fired == []


def test_weights_come_from_store(clock):
    store = AdaptiveStore(clock=clock)
    store.weights["MA_BULLISH"] = 40.0
    result = _score(store, IndicatorBundle(ma_short=2, ma_long=1))
    assert result.total == 40
