"""
Selection orchestrator.

``SignalScanner.run_pass`` walks every (symbol, timeframe) pair once:
fetch candles, build indicators and patterns, estimate the ML probability
and reference-asset correlation, score with the adaptive engine and keep
the valid results that the risk gate allows.  Candidates are retained
across passes, newest per pair.  Inside the selection window the best
retained candidate is emitted and recorded as accepted at once; outside it
the strongest one is only reported.

Pairs are evaluated under an ``asyncio.Semaphore`` with a per-pair timeout.
A failing or slow pair is recorded in the pass report and never aborts the
pass.  Only one pass may run at a time.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from adaptive_scoring import AdaptiveScoringEngine
from async_utils import call_maybe_async
from candlestick_patterns import build_pattern_bundle
from config import ScannerSettings, load_scanner_settings
from log_utils import setup_logger
from reference_correlation import ReferenceCorrelationEstimator
from risk_manager import RiskCheck, RiskManager, TradeLevels, calculate_trading_levels
from signal_selector import in_selection_window, select_best_candidate, strongest_candidate
from signal_types import (
    BEARISH,
    BULLISH,
    Candidate,
    CorrelationSignal,
    IndicatorBundle,
    neutral_correlation,
    safe_float,
)
from technical_indicators import build_indicator_bundle, detect_signal_trend

logger = setup_logger(__name__)

NEUTRAL_ML_PROBABILITY = 0.5
# Retained candidates older than one selection cycle are discarded.
PENDING_MAX_AGE_SECONDS = 3600.0


def default_indicator_provider(symbol: str, timeframe: str, data: pd.DataFrame) -> IndicatorBundle:
    return build_indicator_bundle(data)


@dataclass
class PassReport:
    """Summary of one scanner pass."""

    started_at: float
    finished_at: float = 0.0
    threshold: float = 0.0
    evaluated: int = 0
    skipped: List[str] = field(default_factory=list)
    candidates: List[Candidate] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    in_window: bool = False
    emitted: Optional[Candidate] = None
    levels: Optional[TradeLevels] = None
    best_so_far: Optional[Candidate] = None

    def to_json(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "threshold": self.threshold,
            "evaluated": self.evaluated,
            "skipped": list(self.skipped),
            "candidates": [f"{c.symbol}@{c.timeframe}" for c in self.candidates],
            "errors": dict(self.errors),
            "in_window": self.in_window,
            "emitted": self.emitted.signal_id if self.emitted else None,
            "best_so_far": self.best_so_far.signal_id if self.best_so_far else None,
        }


class SignalScanner:
    """Scheduling pass over all configured pairs.

    Collaborators may be plain callables or coroutine functions:

    * ``fetch_ohlcv(symbol, timeframe)`` -> pandas OHLCV frame
    * ``indicator_provider(symbol, timeframe, data)`` -> ``IndicatorBundle``
    * ``pattern_provider(data)`` -> ``PatternBundle``
    * ``ml_estimator(symbol, data, indicators)`` -> probability in [0, 1]
    * ``correlation_estimator(symbol, direction, data)`` -> ``CorrelationSignal``;
      defaults to a ``ReferenceCorrelationEstimator`` over ``fetch_ohlcv``
    * ``risk_check(symbol, active_monitors)`` -> ``RiskCheck``
    * ``active_monitors()`` -> symbols currently under live monitoring
    * ``on_signal(candidate, levels)`` -> called once per emitted signal
    """

    def __init__(
        self,
        engine: AdaptiveScoringEngine,
        fetch_ohlcv: Callable[..., Any],
        indicator_provider: Optional[Callable[..., Any]] = None,
        pattern_provider: Optional[Callable[..., Any]] = None,
        ml_estimator: Optional[Callable[..., Any]] = None,
        correlation_estimator: Optional[Callable[..., Any]] = None,
        risk_check: Optional[Callable[..., Any]] = None,
        active_monitors: Optional[Callable[[], Any]] = None,
        on_signal: Optional[Callable[..., Any]] = None,
        settings: Optional[ScannerSettings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.settings = settings or load_scanner_settings()
        self._fetch = fetch_ohlcv
        self._indicators = indicator_provider or default_indicator_provider
        self._patterns = pattern_provider or build_pattern_bundle
        self._ml = ml_estimator
        self.reference_estimator: Optional[ReferenceCorrelationEstimator] = None
        if correlation_estimator is None:
            self.reference_estimator = ReferenceCorrelationEstimator(fetch_ohlcv, clock=clock)
            correlation_estimator = self.reference_estimator.estimate
        self._correlation = correlation_estimator
        self._risk_check = risk_check or RiskManager().can_open_trade
        self._active_monitors = active_monitors or (lambda: [])
        self._on_signal = on_signal
        self._clock = clock
        self._running = False
        self.pending_candidates: List[Candidate] = []
        self.pass_count = 0
        self.last_report: Optional[PassReport] = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Upstream collaborators with neutral fallbacks
    # ------------------------------------------------------------------
    async def _ml_probability(self, symbol: str, data: pd.DataFrame, indicators: IndicatorBundle) -> Optional[float]:
        if self._ml is None:
            return None
        try:
            value = safe_float(await call_maybe_async(self._ml, symbol, data, indicators))
        except Exception as exc:
            logger.warning("ML estimator failed for %s: %s", symbol, exc)
            return NEUTRAL_ML_PROBABILITY
        if value is None:
            return NEUTRAL_ML_PROBABILITY
        return min(1.0, max(0.0, value))

    async def _reference_correlation(self, symbol: str, direction: str, data: pd.DataFrame) -> CorrelationSignal:
        try:
            signal = await call_maybe_async(self._correlation, symbol, direction, data)
        except Exception as exc:
            logger.warning("Correlation estimator failed for %s: %s", symbol, exc)
            return neutral_correlation("correlation unavailable; technical analysis only")
        if not isinstance(signal, CorrelationSignal):
            return neutral_correlation()
        return signal

    # ------------------------------------------------------------------
    # Per-pair evaluation
    # ------------------------------------------------------------------
    async def evaluate_pair(
        self, symbol: str, timeframe: str, monitors: Sequence[str]
    ) -> Optional[Candidate]:
        data = await call_maybe_async(self._fetch, symbol, timeframe)
        if data is None or len(data) < self.settings.min_candles:
            logger.info(
                "%s %s: insufficient data (%d < %d)",
                symbol,
                timeframe,
                0 if data is None else len(data),
                self.settings.min_candles,
            )
            return None

        indicators = await call_maybe_async(self._indicators, symbol, timeframe, data)
        patterns = await call_maybe_async(self._patterns, data)
        direction = detect_signal_trend(indicators, patterns)
        ml_probability = await self._ml_probability(symbol, data, indicators)
        correlation = await self._reference_correlation(symbol, direction, data)

        result = self.engine.evaluate(
            symbol, timeframe, indicators, patterns, ml_probability, direction, correlation
        )
        logger.info(
            "%s %s: score %.1f (%s)",
            symbol,
            timeframe,
            result.total_score,
            "valid" if result.is_valid else result.reason,
        )
        if not result.is_valid:
            return None

        risk = await call_maybe_async(self._risk_check, symbol, list(monitors))
        if isinstance(risk, Mapping):
            risk = RiskCheck(bool(risk.get("allowed")), str(risk.get("reason", "")))
        if not risk.allowed:
            logger.info("%s: blocked by risk management - %s", symbol, risk.reason)
            return None

        entry = safe_float(indicators.close)
        if entry is None:
            entry = float(data["close"].iloc[-1])
        now = self._clock()
        return Candidate(
            symbol=symbol,
            timeframe=timeframe,
            entry_price=entry,
            probability=result.total_score,
            trend=direction,
            indicators=indicators,
            patterns=patterns,
            correlation=correlation,
            regime=result.breakdown.get("regime", self.engine.market_regime),
            created_at=now,
            signal_id=f"{symbol.replace('/', '')}_{timeframe}_{int(now * 1000)}",
            ml_probability=ml_probability,
            breakdown=result.breakdown,
        )

    # ------------------------------------------------------------------
    # Scheduling pass
    # ------------------------------------------------------------------
    async def run_pass(self) -> Optional[PassReport]:
        """Evaluate every pair once; returns ``None`` if a pass is already running."""

        if self._running:
            logger.warning("Scan pass already in progress - skipping")
            return None
        self._running = True
        try:
            return await self._run_pass()
        finally:
            self._running = False

    async def _run_pass(self) -> PassReport:
        self.pass_count += 1
        report = PassReport(started_at=self._clock())
        self.engine.refresh_weights()
        report.threshold = self.engine.current_threshold()

        monitors = list(await call_maybe_async(self._active_monitors) or [])
        pairs = []
        for symbol in self.settings.symbols:
            if symbol in monitors:
                logger.info("%s: active monitor - skipping", symbol)
                report.skipped.append(symbol)
                continue
            pairs.extend((symbol, timeframe) for timeframe in self.settings.timeframes)
        logger.info(
            "Scan pass #%d: %d pairs, threshold %.1f", self.pass_count, len(pairs), report.threshold
        )

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def guarded(symbol: str, timeframe: str) -> Optional[Candidate]:
            key = f"{symbol}@{timeframe}"
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        self.evaluate_pair(symbol, timeframe, monitors),
                        timeout=self.settings.pair_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    logger.warning("%s timed out after %.1fs", key, self.settings.pair_timeout_seconds)
                    report.errors[key] = "timeout"
                except Exception as exc:
                    logger.exception("Error analysing %s", key)
                    report.errors[key] = str(exc) or type(exc).__name__
                finally:
                    report.evaluated += 1
                    if self.settings.pair_pause_seconds > 0:
                        await asyncio.sleep(self.settings.pair_pause_seconds)
            return None

        results = await asyncio.gather(*(guarded(s, tf) for s, tf in pairs))
        report.candidates = [c for c in results if c is not None]
        pool = self._merge_pending(report.candidates, monitors)

        report.in_window = in_selection_window(self._clock(), self.settings.selection)
        if report.in_window:
            best = select_best_candidate(pool, self.settings.selection)
            if best is not None:
                await self._emit(best, report)
            self.pending_candidates = []
        else:
            self.pending_candidates = pool
            report.best_so_far = strongest_candidate(pool)
            if report.best_so_far is not None:
                logger.info(
                    "Outside selection window; best so far %s %s (%.1f)",
                    report.best_so_far.symbol,
                    report.best_so_far.timeframe,
                    report.best_so_far.probability,
                )

        report.finished_at = self._clock()
        logger.info(
            "Scan pass #%d done: %d evaluated, %d candidates, %d errors",
            self.pass_count,
            report.evaluated,
            len(report.candidates),
            len(report.errors),
        )
        self.last_report = report
        return report

    def _merge_pending(self, fresh: Sequence[Candidate], monitors: Sequence[str]) -> List[Candidate]:
        """Combine retained candidates with this pass's, newest per pair.

        A re-collected pair moves to the end so the pool stays in collection
        order.  Entries for symbols that are now monitored or blacklisted, or
        that are older than ``PENDING_MAX_AGE_SECONDS``, are dropped.
        """

        now = self._clock()
        pool: Dict[tuple, Candidate] = {}
        for candidate in list(self.pending_candidates) + list(fresh):
            key = (candidate.symbol, candidate.timeframe)
            pool.pop(key, None)
            pool[key] = candidate

        kept = []
        for candidate in pool.values():
            if candidate.symbol in monitors:
                reason = "active monitor"
            elif self.engine.store.is_blacklisted(candidate.symbol):
                reason = "blacklisted"
            elif now - candidate.created_at > PENDING_MAX_AGE_SECONDS:
                reason = "expired"
            else:
                kept.append(candidate)
                continue
            logger.info("Dropping retained %s %s: %s", candidate.symbol, candidate.timeframe, reason)
        return kept

    async def _emit(self, candidate: Candidate, report: PassReport) -> None:
        self.engine.mark_signal_accepted(self._clock())
        levels = calculate_trading_levels(
            candidate.entry_price, BEARISH if candidate.trend == BEARISH else BULLISH
        )
        report.emitted = candidate
        report.levels = levels
        logger.info(
            "Emitting %s %s (%.1f) entry %.8f stop %.8f",
            candidate.symbol,
            candidate.timeframe,
            candidate.probability,
            levels.entry,
            levels.stop_loss,
        )
        if self._on_signal is None:
            return
        try:
            await call_maybe_async(self._on_signal, candidate, levels)
        except Exception:
            logger.exception("Signal handler failed for %s", candidate.signal_id)

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run passes every ``scan_interval_seconds`` until ``stop_event`` is set."""

        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                await self.run_pass()
            except Exception:
                logger.exception("Scan pass failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.settings.scan_interval_seconds)
            except asyncio.TimeoutError:
                continue


__all__ = ["PassReport", "SignalScanner", "default_indicator_provider", "NEUTRAL_ML_PROBABILITY"]
