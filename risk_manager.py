"""Pre-signal risk gate and trade level calculation.

The gate caps the number of live monitors and the exposure per symbol.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Sequence

from log_utils import setup_logger
from signal_types import BULLISH, safe_float

logger = setup_logger(__name__)

__all__ = [
    "RiskCheck",
    "TradeLevels",
    "RiskManager",
    "calculate_trading_levels",
]

TARGET_PERCENTAGES: Sequence[float] = (1.2, 2.4, 3.6, 4.8, 6.0, 7.2)
STOP_LOSS_PERCENTAGE = 2.5


@dataclass(frozen=True)
class RiskCheck:
    allowed: bool
    reason: str = "OK"


@dataclass(frozen=True)
class TradeLevels:
    """Entry, take-profit ladder and stop for an emitted signal."""

    entry: float
    targets: List[float] = field(default_factory=list)
    stop_loss: float = 0.0
    risk_reward_ratio: float = 0.0

    def to_json(self) -> dict[str, Any]:
        return {
            "entry": float(self.entry),
            "targets": [float(t) for t in self.targets],
            "stop_loss": float(self.stop_loss),
            "risk_reward_ratio": float(self.risk_reward_ratio),
        }


def calculate_trading_levels(
    entry_price: float,
    trend: str = BULLISH,
    target_percentages: Sequence[float] = TARGET_PERCENTAGES,
    stop_loss_percentage: float = STOP_LOSS_PERCENTAGE,
) -> TradeLevels:
    """Return targets and stop for ``entry_price``; anything but BULLISH is a short."""

    entry = safe_float(entry_price)
    if entry is None or entry <= 0:
        raise ValueError(f"entry price must be a positive number, got {entry_price!r}")
    is_long = trend == BULLISH
    if is_long:
        targets = [entry * (1 + pct / 100) for pct in target_percentages]
        stop = entry * (1 - stop_loss_percentage / 100)
    else:
        targets = [entry * (1 - pct / 100) for pct in target_percentages]
        stop = entry * (1 + stop_loss_percentage / 100)
    ratio = target_percentages[0] / stop_loss_percentage if target_percentages else 0.0
    return TradeLevels(entry=entry, targets=targets, stop_loss=stop, risk_reward_ratio=ratio)


class RiskManager:
    """Concurrency and per-symbol exposure limits for new signals."""

    def __init__(self, max_concurrent_trades: int = 20, max_symbol_exposure: int = 2) -> None:
        self.max_concurrent_trades = max_concurrent_trades
        self.max_symbol_exposure = max_symbol_exposure

    def can_open_trade(self, symbol: str, active_monitors: Iterable[str] | Mapping[str, Any]) -> RiskCheck:
        """Return whether a new signal for ``symbol`` may be opened.

        ``active_monitors`` is a snapshot of symbols currently monitored; a
        mapping contributes its keys and repeated symbols count separately.
        """

        monitors = list(active_monitors or [])
        if len(monitors) >= self.max_concurrent_trades:
            logger.info(
                "Concurrent trade limit reached: %d/%d", len(monitors), self.max_concurrent_trades
            )
            return RiskCheck(False, "concurrent trade limit reached")
        exposure = sum(1 for s in monitors if s == symbol)
        if exposure >= self.max_symbol_exposure:
            logger.info("Exposure limit for %s: %d/%d", symbol, exposure, self.max_symbol_exposure)
            return RiskCheck(False, f"exposure limit reached for {symbol}")
        return RiskCheck(True, "OK")

