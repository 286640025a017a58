from datetime import datetime, timezone

import pytest


class FakeClock:
    """Settable epoch-seconds clock shared by a store, an engine and a scanner."""

    def __init__(self, now: float) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    # 10:30 UTC, outside the default selection window
    return FakeClock(datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc).timestamp())
