"""
Adaptive weight and reputation store.

The store owns every piece of learned state used by the scoring engine:
indicator weights, per-indicator usage and win counts, per-symbol trade
history, the temporary symbol blacklist, the counter-trend day counter and
the time of the last accepted signal.  One instance is shared by the scoring
engine and the scanner; build a fresh one per test for isolation.

All reads and writes go through a single re-entrant lock.  Callers never hold
the lock across an ``await``: every public method acquires and releases it
before returning, so the asyncio scanner can never suspend while owning it.
"""
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from config import ScoringSettings
from log_utils import setup_logger
from signal_types import (
    NORMAL,
    BlacklistEntry,
    CounterTrendState,
    IndicatorPerformance,
    SymbolPerformance,
)

logger = setup_logger(__name__)

Clock = Callable[[], float]


def _utc_day(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


class AdaptiveStore:
    """Single-writer container for the engine's mutable state."""

    def __init__(self, settings: Optional[ScoringSettings] = None, clock: Clock = time.time) -> None:
        self.settings = settings or ScoringSettings()
        self._clock = clock
        self._lock = threading.RLock()
        self._initial_weights: Dict[str, float] = dict(self.settings.weights)
        self.weights: Dict[str, float] = {}
        self.indicator_performance: Dict[str, IndicatorPerformance] = {}
        self.symbol_performance: Dict[str, SymbolPerformance] = {}
        self.blacklist: Dict[str, BlacklistEntry] = {}
        self.counter_trend = CounterTrendState()
        self.market_regime: str = NORMAL
        self.last_signal_time: Optional[float] = None
        self.started_at: float = 0.0
        self.reset()

    def now(self) -> float:
        return float(self._clock())

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """Clear every learned value back to the configured defaults."""

        with self._lock:
            self.weights = dict(self._initial_weights)
            self.indicator_performance = {
                name: IndicatorPerformance() for name in self._initial_weights
            }
            self.symbol_performance = {}
            self.blacklist = {}
            now = self.now()
            self.counter_trend = CounterTrendState(day=_utc_day(now))
            self.market_regime = NORMAL
            self.last_signal_time = None
            self.started_at = now
        logger.info("Adaptive store reset to defaults")

    # ------------------------------------------------------------------
    # Weights and indicator performance
    # ------------------------------------------------------------------
    def weight(self, name: str) -> float:
        with self._lock:
            return float(self.weights.get(name, 0.0))

    def weights_snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self.weights)

    def record_usage(self, indicator: str, contribution: float) -> None:
        """Count one use of ``indicator`` and fold ``|contribution|`` into its impact."""

        with self._lock:
            perf = self.indicator_performance.get(indicator)
            if perf is None:
                perf = IndicatorPerformance()
                self.indicator_performance[indicator] = perf
            perf.trades += 1
            perf.total_impact += abs(float(contribution))
            perf.avg_impact = perf.total_impact / perf.trades

    def reweight(self) -> Dict[str, Dict[str, float]]:
        """Nudge weights of well-exercised indicators toward their win rate.

        Only indicators with at least ``min_trades_for_adjustment`` uses are
        touched; each is multiplied by ``1 + (win_rate - 0.5) * factor``.
        Returns the changes that moved a weight by more than 5 %.
        """

        changes: Dict[str, Dict[str, float]] = {}
        minimum = self.settings.min_trades_for_adjustment
        factor = self.settings.adjustment_factor
        with self._lock:
            for name, perf in self.indicator_performance.items():
                if perf.trades < minimum or name not in self.weights:
                    continue
                adjustment = (perf.win_rate - 0.5) * factor
                old = self.weights[name]
                self.weights[name] = old * (1 + adjustment)
                if abs(adjustment) > 0.05:
                    changes[name] = {
                        "old_weight": old,
                        "new_weight": self.weights[name],
                        "adjustment_pct": adjustment * 100,
                    }
        if changes:
            logger.info("Reweighted indicators: %s", sorted(changes))
        return changes

    def indicator_performance_report(self) -> Dict[str, Dict[str, str]]:
        """Return formatted stats for every indicator used at least once."""

        report: Dict[str, Dict[str, str]] = {}
        with self._lock:
            for name, perf in self.indicator_performance.items():
                if perf.trades <= 0:
                    continue
                report[name] = {
                    "trades": str(perf.trades),
                    "win_rate": f"{perf.win_rate * 100:.1f}",
                    "avg_impact": f"{perf.avg_impact:.2f}",
                    "current_weight": f"{self.weights.get(name, 0.0):.2f}",
                }
        return report

    # ------------------------------------------------------------------
    # Trade feedback and symbol reputation
    # ------------------------------------------------------------------
    def record_trade_result(
        self,
        symbol: str,
        indicators_used: Iterable[str] | Mapping[str, object] | None,
        is_win: bool,
        final_pnl: float | None,
    ) -> SymbolPerformance:
        """Fold one closed trade into symbol and indicator statistics.

        ``indicators_used`` may be any iterable of indicator names (a mapping
        contributes its keys).  Unknown indicator names are ignored.
        """

        pnl = 0.0
        try:
            if final_pnl is not None:
                pnl = float(final_pnl)
        except (TypeError, ValueError):
            pnl = 0.0
        if pnl != pnl:
            pnl = 0.0

        names = list(indicators_used or [])
        with self._lock:
            now = self.now()
            stats = self.symbol_performance.get(symbol)
            if stats is None:
                stats = SymbolPerformance(last_update=now)
                self.symbol_performance[symbol] = stats
            stats.trades += 1
            stats.total_pnl += pnl
            stats.avg_pnl = stats.total_pnl / stats.trades
            stats.last_update = now
            if is_win:
                stats.wins += 1
            stats.win_rate = stats.wins / stats.trades

            for name in names:
                perf = self.indicator_performance.get(str(name))
                if perf is None:
                    continue
                if is_win:
                    perf.wins += 1
                if perf.trades > 0:
                    perf.win_rate = perf.wins / perf.trades

            if (
                stats.trades >= self.settings.blacklist_min_trades
                and stats.win_rate < self.settings.blacklist_threshold
            ):
                self.add_to_blacklist(symbol, f"low performance: {stats.win_rate * 100:.1f}%")
            snapshot = SymbolPerformance(**vars(stats))

        logger.info(
            "Trade result recorded for %s: %s (%.2f%%), %d/%d wins",
            symbol,
            "win" if is_win else "loss",
            pnl,
            snapshot.wins,
            snapshot.trades,
        )
        return snapshot

    def symbol_stats(self, symbol: str) -> Dict[str, float]:
        with self._lock:
            stats = self.symbol_performance.get(symbol)
            if stats is None:
                return {"trades": 0, "wins": 0, "win_rate": 0.5, "avg_pnl": 0.0}
            return {
                "trades": stats.trades,
                "wins": stats.wins,
                "win_rate": stats.win_rate,
                "avg_pnl": stats.avg_pnl,
            }

    def symbol_multiplier(self, symbol: str) -> float:
        """Return 1.1 for reliable symbols, 0.9 for poor ones, else 1.0."""

        with self._lock:
            stats = self.symbol_performance.get(symbol)
            if stats is None or stats.trades < self.settings.symbol_min_trades:
                return 1.0
            if stats.win_rate > 0.6:
                return 1.1
            if stats.win_rate < 0.4:
                return 0.9
            return 1.0

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------
    def add_to_blacklist(self, symbol: str, reason: str) -> BlacklistEntry:
        with self._lock:
            now = self.now()
            entry = BlacklistEntry(
                symbol=symbol,
                reason=reason,
                created_at=now,
                expires_at=now + self.settings.blacklist_duration_seconds,
            )
            self.blacklist[symbol] = entry
        logger.warning("%s blacklisted: %s", symbol, reason)
        return entry

    def is_blacklisted(self, symbol: str) -> bool:
        """Return whether ``symbol`` is blacklisted, evicting an expired entry."""

        with self._lock:
            entry = self.blacklist.get(symbol)
            if entry is None:
                return False
            if entry.expired(self.now()):
                del self.blacklist[symbol]
                logger.info("%s removed from blacklist (expired)", symbol)
                return False
            return True

    def remove_from_blacklist(self, symbol: str) -> bool:
        with self._lock:
            removed = self.blacklist.pop(symbol, None) is not None
        if removed:
            logger.info("%s removed from blacklist manually", symbol)
        return removed

    def get_blacklisted_symbols(self) -> List[BlacklistEntry]:
        with self._lock:
            now = self.now()
            for symbol in [s for s, e in self.blacklist.items() if e.expired(now)]:
                del self.blacklist[symbol]
            return list(self.blacklist.values())

    # ------------------------------------------------------------------
    # Counter-trend bookkeeping
    # ------------------------------------------------------------------
    def roll_day(self) -> bool:
        """Reset the counter-trend counter when the UTC date has changed."""

        with self._lock:
            today = _utc_day(self.now())
            if self.counter_trend.day == today:
                return False
            self.counter_trend.day = today
            self.counter_trend.approved_today = 0
        logger.info("Daily counter-trend counter reset for %s", today)
        return True

    def counter_trend_snapshot(self) -> CounterTrendState:
        with self._lock:
            return CounterTrendState(**vars(self.counter_trend))

    def record_counter_trend_approval(self) -> int:
        with self._lock:
            self.counter_trend.approved_today += 1
            self.counter_trend.last_approval_time = self.now()
            return self.counter_trend.approved_today

    # ------------------------------------------------------------------
    # Regime and acceptance time
    # ------------------------------------------------------------------
    def set_market_regime(self, regime: str) -> None:
        with self._lock:
            self.market_regime = regime

    def get_market_regime(self) -> str:
        with self._lock:
            return self.market_regime

    def mark_signal_accepted(self, when: Optional[float] = None) -> float:
        with self._lock:
            self.last_signal_time = self.now() if when is None else float(when)
            return self.last_signal_time

    def last_accepted_reference(self) -> float:
        """Return the time the threshold clock runs from.

        Before any signal is accepted this is the time the store was created
        or last reset.
        """

        with self._lock:
            if self.last_signal_time is not None:
                return self.last_signal_time
            return self.started_at


__all__ = ["AdaptiveStore", "Clock"]
