"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional


class RainStatus(str, Enum):
    dry = "DRY"
    rain = "RAIN"


class ServoStatus(str, Enum):
    open = "OPEN"
    closed = "CLOSED"


class DeviceMode(str, Enum):
    auto = "AUTO"
    manual = "MANUAL"


class Metric(str, Enum):
    """Series that can be requested for a device."""

    temperature = "temperature"
    humidity = "humidity"
    light = "light"
    rain = "rain"
    servo = "servo"


@dataclass(frozen=True, slots=True)
class Device:
    id: str
    device_key: str
    device_name: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class Reading:
    """A single stored telemetry sample. Never mutated once stored."""

    device_id: str
    timestamp: datetime
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    light_intensity: Optional[float] = None
    rain_status: Optional[RainStatus] = None
    servo_status: Optional[ServoStatus] = None
    mode: Optional[DeviceMode] = None


@dataclass(frozen=True, slots=True)
class DownsampledPoint:
    timestamp: datetime
    value: float


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Transition of a monitored field between two consecutive readings."""

    device_id: str
    previous: Reading
    current: Reading
    changed_fields: FrozenSet[str]


@dataclass(frozen=True, slots=True)
class MetricAccessor:
    field_name: str
    extract: Callable[[Reading], Optional[float]]


def _flag(value: object, truthy: Enum) -> Optional[float]:
    if value is None:
        return None
    return 1.0 if value == truthy else 0.0


# Categorical states map to 0/1 so that bucket averages read as
# "fraction of time in state".
METRIC_ACCESSORS: Dict[Metric, MetricAccessor] = {
    Metric.temperature: MetricAccessor("temperature", lambda r: r.temperature),
    Metric.humidity: MetricAccessor("humidity", lambda r: r.humidity),
    Metric.light: MetricAccessor("light_intensity", lambda r: r.light_intensity),
    Metric.rain: MetricAccessor(
        "rain_status", lambda r: _flag(r.rain_status, RainStatus.rain)
    ),
    Metric.servo: MetricAccessor(
        "servo_status", lambda r: _flag(r.servo_status, ServoStatus.open)
    ),
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def extract_value(reading: Reading, metric: Metric) -> Optional[float]:
    return METRIC_ACCESSORS[metric].extract(reading)


def parse_metric(value: str) -> Metric:
    """Resolve a metric name, raising ``ValueError`` for unknown selectors."""
    if not value:
        raise ValueError("metric is required")
    candidate = value.strip().lower()
    if candidate == "lightintensity":
        candidate = Metric.light.value
    try:
        return Metric(candidate)
    except ValueError as exc:
        choices = ", ".join(metric.value for metric in Metric)
        raise ValueError(f"Unknown metric {value!r}; expected one of: {choices}") from exc
