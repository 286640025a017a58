"""Anti-starvation threshold: the quality bar relaxes while no signal is accepted."""
from __future__ import annotations

from typing import Optional

from config import ThresholdSettings


def calculate_dynamic_threshold(
    last_accepted: Optional[float],
    now: float,
    settings: Optional[ThresholdSettings] = None,
) -> float:
    """Return the minimum acceptable score at ``now``.

    Parameters
    ----------
    last_accepted : float or None
        Epoch seconds of the last accepted signal.  ``None`` means nothing
        has been accepted and no reference time is known, which is treated
        as already past the emergency breakpoint.
    now : float
        Current epoch seconds.
    settings : ThresholdSettings, optional
        Tier values and breakpoints, defaulting to 70/60/50 at 90/120 minutes.
    """

    settings = settings or ThresholdSettings()
    if last_accepted is None:
        return settings.emergency
    minutes = max(0.0, now - last_accepted) / 60.0
    if minutes >= settings.emergency_after_minutes:
        return settings.emergency
    if minutes >= settings.fallback_after_minutes:
        return settings.fallback
    return settings.default


__all__ = ["calculate_dynamic_threshold"]
