from __future__ import annotations

import asyncio

from pos_offline.core import metrics
from pos_offline.core.metrics import MetricsRegistry, timed


def test_metrics_registry_counts_and_timings() -> None:
    registry = MetricsRegistry()

    registry.increment("operations_synced")
    registry.increment("operations_synced", 2)
    registry.record_timing("sync.pass", 10.0)
    registry.record_timing("sync.pass", 30.0)

    snapshot = registry.snapshot()
    assert registry.counter("operations_synced") == 3
    assert snapshot["counters"]["operations_synced"] == 3
    assert snapshot["timings_ms"]["sync.pass"]["count"] == 2
    assert snapshot["timings_ms"]["sync.pass"]["avg"] == 20.0
    assert snapshot["timings_ms"]["sync.pass"]["max"] == 30.0
    assert snapshot["timings_ms"]["sync.pass"]["last"] == 30.0


def test_metrics_registry_reset_clears_everything() -> None:
    registry = MetricsRegistry()
    registry.increment("sync_runs")
    registry.record_timing("close_day", 1.0)

    registry.reset()

    assert registry.snapshot() == {"counters": {}, "timings_ms": {}}


def test_timed_records_sync_and_async_callables(monkeypatch) -> None:
    registry = MetricsRegistry()
    monkeypatch.setattr(metrics, "metrics_registry", registry)

    @timed("plain")
    def plain() -> int:
        return 1

    @timed("coroutine")
    async def coroutine() -> int:
        return 2

    assert plain() == 1
    assert asyncio.run(coroutine()) == 2
    timings = registry.snapshot()["timings_ms"]
    assert timings["plain"]["count"] == 1
    assert timings["coroutine"]["count"] == 1


def test_timed_records_even_when_the_call_raises(monkeypatch) -> None:
    registry = MetricsRegistry()
    monkeypatch.setattr(metrics, "metrics_registry", registry)

    @timed("failing")
    def failing() -> None:
        raise ValueError("boom")

    try:
        failing()
    except ValueError:
        pass

    assert registry.snapshot()["timings_ms"]["failing"]["count"] == 1
