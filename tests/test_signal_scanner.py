import asyncio
from datetime import datetime, timezone

import numpy as np
import pandas as pd
import pytest

from adaptive_scoring import AdaptiveScoringEngine
from adaptive_store import AdaptiveStore
from config import ScannerSettings
from reference_correlation import ReferenceCorrelationEstimator
from risk_manager import RiskCheck
from signal_scanner import NEUTRAL_ML_PROBABILITY, SignalScanner
from signal_types import (
    AGAINST,
    ALIGNED,
    BEARISH,
    BULLISH,
    NEUTRAL,
    CorrelationSignal,
    IndicatorBundle,
    MacdReading,
    PatternBundle,
    neutral_correlation,
)

# base 85 + normal regime 8 = 93
STRONG = IndicatorBundle(
    rsi=20, macd=MacdReading(line=2, signal=1, histogram=1e-5), ma_short=101, ma_long=100, close=100
)
# base 70 + normal regime 8 = 78
MEDIUM = IndicatorBundle(rsi=20, macd=MacdReading(line=2, signal=1, histogram=1e-5), close=50)
WEAK = IndicatorBundle(rsi=50, close=10)

BUNDLES = {"AAA/USDT": STRONG, "BBB/USDT": MEDIUM, "CCC/USDT": WEAK}
SETTINGS = ScannerSettings(symbols=tuple(BUNDLES), timeframes=("1h",), min_candles=50)


def _frame(bars=60):
    close = np.full(bars, 100.0)
    return pd.DataFrame({"open": close, "high": close, "low": close, "close": close, "volume": close})


def fetch(symbol, timeframe):
    return _frame()


def indicators(symbol, timeframe, data):
    return BUNDLES[symbol]


def patterns(data):
    return PatternBundle()


def allow_all(symbol, monitors):
    return RiskCheck(True)


def no_reference(symbol, direction, data):
    return neutral_correlation()


def _scanner(clock, settings=SETTINGS, **overrides):
    engine = AdaptiveScoringEngine(AdaptiveStore(clock=clock))
    kwargs = dict(
        fetch_ohlcv=fetch,
        indicator_provider=indicators,
        pattern_provider=patterns,
        risk_check=allow_all,
        correlation_estimator=no_reference,
        settings=settings,
        clock=clock,
    )
    kwargs.update(overrides)
    return SignalScanner(engine, **kwargs)


def _at(clock, minute):
    clock.now = datetime(2024, 5, 1, 10, minute, tzinfo=timezone.utc).timestamp()


def _in_window(clock):
    _at(clock, 57)


def test_best_candidate_emitted_in_window(clock):
    _in_window(clock)
    emitted = []
    scanner = _scanner(clock, on_signal=lambda candidate, levels: emitted.append((candidate, levels)))

    report = asyncio.run(scanner.run_pass())

    assert [c.symbol for c in report.candidates] == ["AAA/USDT", "BBB/USDT"]
    assert report.in_window is True
    assert report.emitted.symbol == "AAA/USDT"
    assert report.emitted.probability == pytest.approx(93)
    assert report.emitted.trend == BULLISH
    assert report.emitted.signal_id == f"AAAUSDT_1h_{int(clock.now * 1000)}"
    assert len(emitted) == 1
    candidate, levels = emitted[0]
    assert candidate is report.emitted
    assert levels.entry == 100
    assert levels.stop_loss == pytest.approx(97.5)
    assert scanner.engine.store.last_signal_time == clock.now
    assert scanner.pending_candidates == []


def test_candidates_retained_outside_window(clock):
    emitted = []
    scanner = _scanner(clock, on_signal=lambda candidate, levels: emitted.append(candidate))

    report = asyncio.run(scanner.run_pass())

    assert report.in_window is False
    assert report.emitted is None
    assert report.best_so_far.symbol == "AAA/USDT"
    assert [c.symbol for c in scanner.pending_candidates] == ["AAA/USDT", "BBB/USDT"]
    assert emitted == []
    assert scanner.engine.store.last_signal_time is None


def test_failing_pair_does_not_abort_pass(clock):
    def flaky_fetch(symbol, timeframe):
        if symbol == "AAA/USDT":
            raise ConnectionError("exchange down")
        return _frame()

    scanner = _scanner(clock, fetch_ohlcv=flaky_fetch)
    report = asyncio.run(scanner.run_pass())

    assert report.errors == {"AAA/USDT@1h": "exchange down"}
    assert report.evaluated == 3
    assert [c.symbol for c in report.candidates] == ["BBB/USDT"]


def test_slow_pair_times_out(clock):
    async def slow_fetch(symbol, timeframe):
        if symbol == "BBB/USDT":
            await asyncio.sleep(5)
        return _frame()

    settings = ScannerSettings(
        symbols=SETTINGS.symbols, timeframes=("1h",), min_candles=50, pair_timeout_seconds=0.05
    )
    scanner = _scanner(clock, settings=settings, fetch_ohlcv=slow_fetch)
    report = asyncio.run(scanner.run_pass())

    assert report.errors == {"BBB/USDT@1h": "timeout"}
    assert [c.symbol for c in report.candidates] == ["AAA/USDT"]


def test_overlapping_pass_is_skipped(clock):
    async def scenario():
        release = asyncio.Event()

        async def gated_fetch(symbol, timeframe):
            await release.wait()
            return _frame()

        scanner = _scanner(clock, fetch_ohlcv=gated_fetch)
        first = asyncio.create_task(scanner.run_pass())
        await asyncio.sleep(0)
        assert scanner.is_running
        assert await scanner.run_pass() is None
        release.set()
        report = await first
        assert not scanner.is_running
        return report

    report = asyncio.run(scenario())
    assert len(report.candidates) == 2


def test_monitored_symbols_are_skipped(clock):
    scanner = _scanner(clock, active_monitors=lambda: ["AAA/USDT"])
    report = asyncio.run(scanner.run_pass())

    assert report.skipped == ["AAA/USDT"]
    assert report.evaluated == 2
    assert [c.symbol for c in report.candidates] == ["BBB/USDT"]


def test_risk_gate_blocks_candidates(clock):
    def block_aaa(symbol, monitors):
        if symbol == "AAA/USDT":
            return {"allowed": False, "reason": "exposure limit reached for AAA/USDT"}
        return {"allowed": True, "reason": "OK"}

    scanner = _scanner(clock, risk_check=block_aaa)
    report = asyncio.run(scanner.run_pass())

    assert [c.symbol for c in report.candidates] == ["BBB/USDT"]


def test_short_history_is_not_scored(clock):
    scanner = _scanner(clock, fetch_ohlcv=lambda symbol, timeframe: _frame(bars=10))
    report = asyncio.run(scanner.run_pass())

    assert report.candidates == []
    assert report.errors == {}
    assert scanner.engine.get_indicator_performance_report() == {}


def test_ml_failure_uses_neutral_probability(clock):
    def broken_model(symbol, data, indicators):
        raise RuntimeError("model not trained")

    scanner = _scanner(clock, ml_estimator=broken_model)
    report = asyncio.run(scanner.run_pass())

    strong = report.candidates[0]
    assert strong.ml_probability == NEUTRAL_ML_PROBABILITY
    # 0.5 * 0.25 * 100 on top of 93
    assert strong.probability == pytest.approx(100)
    assert report.candidates[1].probability == pytest.approx(78 + 12.5)


def test_async_ml_estimator_is_awaited(clock):
    async def model(symbol, data, indicators):
        return 0.8

    scanner = _scanner(clock, ml_estimator=model)
    report = asyncio.run(scanner.run_pass())

    assert report.candidates[1].ml_probability == 0.8
    assert report.candidates[1].probability == pytest.approx(78 + 20)


def test_correlation_failure_is_neutral(clock):
    def broken(symbol, direction, data):
        raise TimeoutError("reference feed stalled")

    scanner = _scanner(clock, correlation_estimator=broken)
    report = asyncio.run(scanner.run_pass())

    assert report.errors == {}
    assert all(c.correlation.alignment == NEUTRAL for c in report.candidates)
    assert [c.symbol for c in report.candidates] == ["AAA/USDT", "BBB/USDT"]


def test_counter_trend_without_reversal_is_dropped(clock):
    def against(symbol, direction, data):
        return CorrelationSignal(reference_trend=BEARISH, strength=90, alignment=AGAINST, bonus=-30)

    scanner = _scanner(clock, correlation_estimator=against)
    report = asyncio.run(scanner.run_pass())

    assert report.candidates == []


def test_signal_handler_failure_is_contained(clock):
    _in_window(clock)

    def broken_handler(candidate, levels):
        raise RuntimeError("notifier offline")

    scanner = _scanner(clock, on_signal=broken_handler)
    report = asyncio.run(scanner.run_pass())

    assert report.emitted.symbol == "AAA/USDT"
    assert scanner.engine.store.last_signal_time == clock.now


def test_report_serialises(clock):
    scanner = _scanner(clock)
    payload = asyncio.run(scanner.run_pass()).to_json()

    assert payload["candidates"] == ["AAA/USDT@1h", "BBB/USDT@1h"]
    assert payload["threshold"] == 70
    assert payload["emitted"] is None


def test_retained_candidate_is_emitted_at_window(clock):
    # Counter-trend setup: approved once, then held back by the cooldown.
    reversal = IndicatorBundle(
        rsi=15,
        macd=MacdReading(line=2, signal=1, histogram=2e-5),
        rsi_divergence=True,
        ma_short=101,
        ma_long=100,
        volume_ma=100,
        current_volume=300,
        close=100,
    )

    def against(symbol, direction, data):
        return CorrelationSignal(reference_trend=BEARISH, strength=90, alignment=AGAINST, bonus=-30)

    _at(clock, 50)
    emitted = []
    scanner = _scanner(
        clock,
        settings=ScannerSettings(symbols=("XRP/USDT",), timeframes=("1h",), min_candles=50),
        indicator_provider=lambda symbol, timeframe, data: reversal,
        pattern_provider=lambda data: PatternBundle(candlestick=("HAMMER",)),
        correlation_estimator=against,
        on_signal=lambda candidate, levels: emitted.append(candidate),
    )

    first = asyncio.run(scanner.run_pass())
    assert [c.symbol for c in first.candidates] == ["XRP/USDT"]
    assert scanner.engine.store.counter_trend.approved_today == 1
    collected = first.candidates[0]

    _at(clock, 56)
    second = asyncio.run(scanner.run_pass())

    assert second.candidates == []
    assert second.in_window is True
    assert second.emitted is collected
    assert emitted == [collected]
    assert scanner.pending_candidates == []


def test_retained_candidates_survive_failed_pass(clock):
    broken = set()

    def fetch_unless_broken(symbol, timeframe):
        if symbol in broken:
            raise ConnectionError("exchange down")
        return _frame()

    _at(clock, 40)
    scanner = _scanner(clock, fetch_ohlcv=fetch_unless_broken)
    asyncio.run(scanner.run_pass())

    broken.add("AAA/USDT")
    _at(clock, 45)
    report = asyncio.run(scanner.run_pass())

    assert [c.symbol for c in report.candidates] == ["BBB/USDT"]
    assert report.best_so_far.symbol == "AAA/USDT"
    assert [c.symbol for c in scanner.pending_candidates] == ["AAA/USDT", "BBB/USDT"]
    assert scanner.pending_candidates[0].created_at == clock.now - 5 * 60
    assert scanner.pending_candidates[1].created_at == clock.now


def test_retained_candidates_drop_monitored_symbols(clock):
    monitors = []
    _at(clock, 50)
    scanner = _scanner(clock, active_monitors=lambda: list(monitors))
    asyncio.run(scanner.run_pass())
    assert [c.symbol for c in scanner.pending_candidates] == ["AAA/USDT", "BBB/USDT"]

    monitors.append("AAA/USDT")
    _at(clock, 56)
    report = asyncio.run(scanner.run_pass())

    assert report.skipped == ["AAA/USDT"]
    assert report.emitted.symbol == "BBB/USDT"
    assert report.emitted.created_at == clock.now


def test_retained_candidates_drop_blacklisted_symbols(clock):
    _at(clock, 50)
    scanner = _scanner(clock)
    asyncio.run(scanner.run_pass())

    scanner.engine.store.add_to_blacklist("AAA/USDT", "manual")
    _at(clock, 56)
    report = asyncio.run(scanner.run_pass())

    assert [c.symbol for c in report.candidates] == ["BBB/USDT"]
    assert report.emitted.symbol == "BBB/USDT"


def test_stale_retained_candidates_expire(clock):
    broken = set()

    def fetch_unless_broken(symbol, timeframe):
        if symbol in broken:
            raise ConnectionError("exchange down")
        return _frame()

    _at(clock, 40)
    scanner = _scanner(clock, fetch_ohlcv=fetch_unless_broken)
    asyncio.run(scanner.run_pass())

    broken.add("AAA/USDT")
    clock.advance(2 * 60 * 60)
    report = asyncio.run(scanner.run_pass())

    assert [c.symbol for c in scanner.pending_candidates] == ["BBB/USDT"]
    assert report.best_so_far.symbol == "BBB/USDT"


def test_reference_correlation_is_used_by_default(clock):
    close = 100 * 1.01 ** np.arange(250)
    trending = pd.DataFrame(
        {"open": close, "high": close * 1.001, "low": close * 0.999, "close": close, "volume": np.full(250, 1000.0)}
    )
    calls = []

    def fetch_trending(symbol, timeframe):
        calls.append(symbol)
        return trending

    scanner = SignalScanner(
        AdaptiveScoringEngine(AdaptiveStore(clock=clock)),
        fetch_ohlcv=fetch_trending,
        indicator_provider=indicators,
        pattern_provider=patterns,
        risk_check=allow_all,
        settings=ScannerSettings(symbols=("AAA/USDT",), timeframes=("1h",), min_candles=50),
        clock=clock,
    )
    report = asyncio.run(scanner.run_pass())

    assert isinstance(scanner.reference_estimator, ReferenceCorrelationEstimator)
    assert "BTC/USDT" in calls
    correlation = report.candidates[0].correlation
    assert correlation.reference_trend == BULLISH
    assert correlation.alignment == ALIGNED
    assert correlation.bonus == 25


def test_default_risk_gate_caps_concurrent_monitors(clock):
    busy = [f"X{i}/USDT" for i in range(20)]
    scanner = _scanner(clock, risk_check=None, active_monitors=lambda: busy)

    report = asyncio.run(scanner.run_pass())

    assert report.evaluated == 3
    assert report.candidates == []
