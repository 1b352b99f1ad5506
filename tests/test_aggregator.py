"""Unit tests for the adaptive aggregation policy."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from datastore.telemetry_store import TelemetryStore
from models.records import Metric, Reading, to_epoch_ms
from services.aggregator import (
    AdaptiveAggregator,
    LocalDownsampleStrategy,
    MalformedAggregateError,
    StoreAggregateStrategy,
)
from services.downsampling import Downsampler

_START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _store_with_readings(count: int) -> tuple[TelemetryStore, str]:
    store = TelemetryStore()
    device = store.register_device("raph_device")
    for index in range(count):
        store.put_reading(
            Reading(
                device_id=device.id,
                timestamp=_START + timedelta(seconds=index),
                temperature=20.0 + (index % 7) / 3,
                humidity=50.0,
            )
        )
    return store, device.id


class FailingAggregateStore(TelemetryStore):
    def __init__(self, result=None, error: Exception | None = None) -> None:
        super().__init__()
        self.result = result
        self.error = error
        self.aggregate_calls = 0

    def aggregate(self, device_id, since, metric, bucket_count):
        self.aggregate_calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def _copy_into(target: TelemetryStore, count: int) -> str:
    device = target.register_device("raph_device")
    for index in range(count):
        target.put_reading(
            Reading(
                device_id=device.id,
                timestamp=_START + timedelta(seconds=index),
                temperature=20.0 + (index % 7) / 3,
            )
        )
    return device.id


def test_small_window_uses_local_path() -> None:
    store = FailingAggregateStore(error=AssertionError("store path should not run"))
    device_id = _copy_into(store, 50)
    aggregator = AdaptiveAggregator(store, cap=10, multiplier=5)

    points = aggregator.series(device_id, _START, Metric.temperature)

    assert store.aggregate_calls == 0
    assert len(points) == 10


def test_large_window_uses_store_aggregate() -> None:
    store, device_id = _store_with_readings(120)
    aggregator = AdaptiveAggregator(store, cap=10, multiplier=2)

    points = aggregator.series(device_id, _START, Metric.humidity)

    assert len(points) == 10
    assert all(point.value == 50.0 for point in points)
    timestamps = [point.timestamp for point in points]
    assert timestamps == sorted(timestamps)


@pytest.mark.parametrize(
    "result, error",
    [
        (None, RuntimeError("aggregation pipeline unavailable")),
        ([], None),
        ({"avgValue": 1.0}, None),
        ([{"avgValue": "20", "avgTime": 0}], None),
        ([{"avgValue": 20.0}], None),
        ([{"avgValue": float("nan"), "avgTime": 0}], None),
        (["not-a-bucket"], None),
    ],
)
def test_store_failures_fall_back_to_local_result(result, error, caplog) -> None:
    failing = FailingAggregateStore(result=result, error=error)
    device_id = _copy_into(failing, 120)
    reference_store = TelemetryStore()
    reference_id = _copy_into(reference_store, 120)

    aggregator = AdaptiveAggregator(failing, cap=10, multiplier=2)
    with caplog.at_level(logging.WARNING, logger="services.aggregator"):
        points = aggregator.series(device_id, _START, Metric.temperature)

    expected = LocalDownsampleStrategy(reference_store, Downsampler(10)).series(
        reference_id, _START, Metric.temperature
    )
    assert failing.aggregate_calls == 1
    assert points == expected
    assert len(points) <= 10
    assert any("falling back" in record.getMessage() for record in caplog.records)


def test_store_strategy_sorts_rounds_and_truncates() -> None:
    class RawStore:
        def aggregate(self, device_id, since, metric, bucket_count):
            base = to_epoch_ms(_START)
            return [
                {"avgValue": 3.14159, "avgTime": base + 2000.7},
                {"avgValue": 1.005, "avgTime": base},
                {"avgValue": 2, "avgTime": base + 1000},
                {"avgValue": 9.0, "avgTime": base + 3000},
            ]

    points = StoreAggregateStrategy(RawStore(), cap=3).series("d", _START, Metric.temperature)

    assert [point.value for point in points] == [1.01, 2.0, 3.14]
    assert points[2].timestamp == _START + timedelta(milliseconds=2000)


def test_store_strategy_rejects_empty_result() -> None:
    class EmptyStore:
        def aggregate(self, device_id, since, metric, bucket_count):
            return []

    with pytest.raises(MalformedAggregateError):
        StoreAggregateStrategy(EmptyStore(), cap=3).series("d", _START, Metric.rain)


def test_local_path_only_reads_window() -> None:
    store, device_id = _store_with_readings(30)
    aggregator = AdaptiveAggregator(store, cap=200)

    points = aggregator.series(device_id, _START + timedelta(seconds=20), Metric.temperature)

    assert len(points) == 10
    assert points[0].timestamp == _START + timedelta(seconds=20)
