"""Adaptive series aggregation: local downsampling or store-side bucketing."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, List, Mapping, Protocol

from models.records import METRIC_ACCESSORS, DownsampledPoint, Metric, from_epoch_ms
from services.downsampling import Downsampler, round_two

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MULTIPLIER = 20


class MalformedAggregateError(ValueError):
    """The store returned an aggregate that does not look like bucket averages."""


class ReadingSource(Protocol):
    def find(self, device_id: str, since: datetime, fields_to_project=None): ...

    def count(self, device_id: str, since: datetime) -> int: ...

    def aggregate(
        self, device_id: str, since: datetime, metric: Metric, bucket_count: int
    ) -> Any: ...


class AggregationStrategy(Protocol):
    name: str

    def series(self, device_id: str, since: datetime, metric: Metric) -> List[DownsampledPoint]: ...


class LocalDownsampleStrategy:
    """Fetch the full ordered window and bucket it in process."""

    name = "local"

    def __init__(self, source: ReadingSource, downsampler: Downsampler) -> None:
        self.source = source
        self.downsampler = downsampler

    def series(self, device_id: str, since: datetime, metric: Metric) -> List[DownsampledPoint]:
        field_name = METRIC_ACCESSORS[metric].field_name
        rows = self.source.find(device_id, since, fields_to_project=[field_name])
        return self.downsampler.downsample(rows, metric)


class StoreAggregateStrategy:
    """Delegate bucketing to the store so the window is never materialized here.

    Bucket boundaries follow the store's own grouping and are not guaranteed
    to match :class:`LocalDownsampleStrategy` point for point.
    """

    name = "store"

    def __init__(self, source: ReadingSource, cap: int) -> None:
        self.source = source
        self.cap = cap

    def series(self, device_id: str, since: datetime, metric: Metric) -> List[DownsampledPoint]:
        raw = self.source.aggregate(device_id, since, metric, self.cap)
        if not isinstance(raw, list):
            raise MalformedAggregateError(f"expected a list of buckets, got {type(raw).__name__}")
        if not raw:
            raise MalformedAggregateError("store aggregate returned no buckets")
        points = [self._to_point(bucket) for bucket in raw]
        points.sort(key=lambda point: point.timestamp)
        return points[: self.cap]

    @staticmethod
    def _to_point(bucket: Any) -> DownsampledPoint:
        if not isinstance(bucket, Mapping):
            raise MalformedAggregateError(f"bucket is not a mapping: {bucket!r}")
        value = bucket.get("avgValue")
        avg_time = bucket.get("avgTime")
        for label, number in (("avgValue", value), ("avgTime", avg_time)):
            if isinstance(number, bool) or not isinstance(number, (int, float)):
                raise MalformedAggregateError(f"{label} is not numeric: {number!r}")
            if not math.isfinite(number):
                raise MalformedAggregateError(f"{label} is not finite: {number!r}")
        return DownsampledPoint(
            timestamp=from_epoch_ms(math.floor(avg_time)),
            value=round_two(value),
        )


class AdaptiveAggregator:
    """Pick the aggregation strategy from the window's row count.

    Windows up to ``cap * multiplier`` rows are downsampled locally; larger ones
    go to the store. Any failure of the store path falls back to the local path.
    """

    def __init__(
        self,
        source: ReadingSource,
        cap: int,
        multiplier: int = DEFAULT_LOCAL_MULTIPLIER,
    ) -> None:
        self.source = source
        self.cap = cap
        self.threshold = cap * multiplier
        self.local = LocalDownsampleStrategy(source, Downsampler(cap))
        self.store = StoreAggregateStrategy(source, cap)

    def series(self, device_id: str, since: datetime, metric: Metric) -> List[DownsampledPoint]:
        row_count = self.source.count(device_id, since)
        if row_count <= self.threshold:
            return self.local.series(device_id, since, metric)

        try:
            return self.store.series(device_id, since, metric)
        except Exception as exc:
            logger.warning(
                "Store aggregation failed; falling back to local downsampling",
                extra={
                    "device_id": device_id,
                    "metric": metric.value,
                    "row_count": row_count,
                    "strategy": self.store.name,
                    "reason": str(exc) or type(exc).__name__,
                },
            )
        return self.local.series(device_id, since, metric)
