"""Bucketed downsampling of ordered readings into a bounded display series."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import List, Optional, Sequence

from models.records import (
    DownsampledPoint,
    Metric,
    Reading,
    extract_value,
    from_epoch_ms,
    to_epoch_ms,
)

DEFAULT_POINT_CAP = 200

_TWO_PLACES = Decimal("0.01")
# Enough digits for the largest finite float quantized to two places.
_QUANTIZE_PRECISION = 400


def round_two(value: float) -> float:
    """Round to two decimals, halves away from zero (2.345 -> 2.35, -2.345 -> -2.35)."""
    with localcontext() as context:
        context.prec = _QUANTIZE_PRECISION
        return float(Decimal(repr(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def _usable(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


class Downsampler:
    """Pure component: compress an ascending reading sequence to at most ``cap`` points."""

    def __init__(self, cap: int = DEFAULT_POINT_CAP) -> None:
        if cap < 1:
            raise ValueError("cap must be a positive integer")
        self.cap = cap

    def downsample(self, readings: Sequence[Reading], metric: Metric) -> List[DownsampledPoint]:
        length = len(readings)
        if length <= self.cap:
            points: List[DownsampledPoint] = []
            for reading in readings:
                value = extract_value(reading, metric)
                if not _usable(value):
                    continue
                points.append(DownsampledPoint(timestamp=reading.timestamp, value=round_two(value)))
            return points

        sampled: List[DownsampledPoint] = []
        for index in range(self.cap):
            start = index * length // self.cap
            end = length if index == self.cap - 1 else (index + 1) * length // self.cap
            point = self._collapse(readings[start:end], metric)
            if point is not None:
                sampled.append(point)
        return sampled

    @staticmethod
    def _collapse(bucket: Sequence[Reading], metric: Metric) -> Optional[DownsampledPoint]:
        value_sum = 0.0
        time_sum = 0
        count = 0
        for reading in bucket:
            value = extract_value(reading, metric)
            if not _usable(value):
                continue
            value_sum += value
            time_sum += to_epoch_ms(reading.timestamp)
            count += 1
        if count == 0:
            return None
        return DownsampledPoint(
            timestamp=from_epoch_ms(time_sum // count),
            value=round_two(value_sum / count),
        )
