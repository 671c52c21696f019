import time

import pytest

from common.latency import LatencyAggregator


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_average_only_counts_samples_inside_window(clock):
    agg = LatencyAggregator(window_s=30.0, clock=clock)
    for at, duration in [(0.0, 1.0), (10.0, 2.0), (35.0, 3.0)]:
        clock.now = at
        agg.record(duration)

    clock.now = 36.0

    assert agg.average() == pytest.approx(2.5)
    assert agg.count() == 2


def test_average_is_zero_without_samples(clock):
    agg = LatencyAggregator(clock=clock)
    assert agg.average() == 0.0

    agg.record(1.0)
    clock.now = 100.0
    assert agg.average() == 0.0


def test_read_does_not_depend_on_purge(clock):
    agg = LatencyAggregator(window_s=30.0, clock=clock)
    agg.record(4.0)
    clock.now = 31.0
    agg.record(2.0)

    assert agg.average() == pytest.approx(2.0)
    assert agg.purge() == 1
    assert agg.average() == pytest.approx(2.0)
    assert agg.purge() == 0


def test_sweeper_purges_in_background():
    agg = LatencyAggregator(window_s=0.01)
    agg.record(1.0)
    agg.start_sweeper(interval_s=0.01)
    try:
        deadline = time.monotonic() + 2
        while agg._samples and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        agg.stop_sweeper()

    assert len(agg._samples) == 0
