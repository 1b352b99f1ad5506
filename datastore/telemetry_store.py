from __future__ import annotations

import bisect
import json
import logging
from dataclasses import fields, replace
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

from models.records import Device, Metric, Reading, extract_value, to_epoch_ms
from settings import get_settings

logger = logging.getLogger(__name__)

_DEVICES_ADAPTER = TypeAdapter(List[Device])
_READINGS_ADAPTER = TypeAdapter(List[Reading])
_ALWAYS_PROJECTED = frozenset({"device_id", "timestamp"})


class DeviceAlreadyExistsError(ValueError):
    """Raised when registering a device key that is already known."""


def _timestamp_of(reading: Reading) -> datetime:
    return reading.timestamp


class TelemetryStore:
    """In-process device registry and reading table with optional JSON persistence.

    Readings are kept per device in ascending timestamp order; readings that
    share a timestamp keep their insertion order. Device registrations are
    written to the persistence file immediately; readings are written on
    :meth:`flush`.
    """

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self.persistence_path = persistence_path
        self._devices: Dict[str, Device] = {}
        self._readings: Dict[str, List[Reading]] = {}
        self._lock = Lock()
        self._dirty = False
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def register_device(self, device_key: str, device_name: Optional[str] = None) -> Device:
        key = (device_key or "").strip()
        if not key:
            raise ValueError("deviceKey is required")
        now = datetime.now(timezone.utc)
        with self._lock:
            if key in self._devices:
                raise DeviceAlreadyExistsError(f"Device {key!r} is already registered.")
            device = Device(
                id=str(uuid4()),
                device_key=key,
                device_name=device_name,
                created_at=now,
                updated_at=now,
            )
            self._devices[key] = device
            self._readings[device.id] = []
            self._persist()
        return device

    def find_device_id(self, device_key: str) -> Optional[str]:
        with self._lock:
            device = self._devices.get(device_key)
        return device.id if device else None

    def list_devices(self) -> List[Device]:
        with self._lock:
            devices = list(self._devices.values())
        return sorted(devices, key=lambda device: device.created_at, reverse=True)

    def put_reading(self, reading: Reading) -> Reading:
        with self._lock:
            rows = self._readings.get(reading.device_id)
            if rows is None:
                raise KeyError(f"Device id {reading.device_id!r} not found.")
            position = bisect.bisect_right(rows, reading.timestamp, key=_timestamp_of)
            rows.insert(position, reading)
            self._dirty = True
        return reading

    def find(
        self,
        device_id: str,
        since: datetime,
        fields_to_project: Optional[Iterable[str]] = None,
    ) -> List[Reading]:
        """Readings at or after ``since`` in ascending time order."""
        rows = self._window(device_id, since)
        if fields_to_project is None:
            return rows
        keep = _ALWAYS_PROJECTED | set(fields_to_project)
        blanks = {f.name: None for f in fields(Reading) if f.name not in keep}
        return [replace(row, **blanks) for row in rows]

    def count(self, device_id: str, since: datetime) -> int:
        return len(self._window(device_id, since))

    def latest(self, device_id: str, limit: int = 2) -> List[Reading]:
        """Most recent readings first."""
        with self._lock:
            rows = self._readings.get(device_id, [])
            return list(reversed(rows[-limit:])) if limit > 0 else []

    def aggregate(
        self,
        device_id: str,
        since: datetime,
        metric: Metric,
        bucket_count: int,
    ) -> List[Dict[str, Any]]:
        """Store-side bucketed averages, shaped like a database driver's raw output.

        Rows are distributed over ``bucket_count`` buckets with NTILE semantics:
        the first ``len(rows) % bucket_count`` buckets hold one extra row.
        """
        if bucket_count < 1:
            raise ValueError("bucket_count must be positive")
        rows = self._window(device_id, since)
        size, extra = divmod(len(rows), bucket_count)
        results: List[Dict[str, Any]] = []
        start = 0
        for index in range(bucket_count):
            end = start + size + (1 if index < extra else 0)
            values = []
            times = []
            for row in rows[start:end]:
                value = extract_value(row, metric)
                if value is None:
                    continue
                values.append(value)
                times.append(to_epoch_ms(row.timestamp))
            start = end
            if values:
                results.append(
                    {
                        "avgValue": sum(values) / len(values),
                        "avgTime": sum(times) / len(times),
                    }
                )
        return results

    def _window(self, device_id: str, since: datetime) -> List[Reading]:
        with self._lock:
            rows = self._readings.get(device_id, [])
            start = bisect.bisect_left(rows, since, key=_timestamp_of)
            return rows[start:]

    def flush(self) -> None:
        """Write readings stored since the last write to the persistence file."""
        with self._lock:
            if self._dirty:
                self._persist()

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        readings = [row for rows in self._readings.values() for row in rows]
        payload = {
            "devices": _DEVICES_ADAPTER.dump_python(list(self._devices.values()), mode="json"),
            "readings": _READINGS_ADAPTER.dump_python(readings, mode="json"),
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        self._dirty = False

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
            devices = _DEVICES_ADAPTER.validate_python(data.get("devices", []))
            readings = _READINGS_ADAPTER.validate_python(data.get("readings", []))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "Ignoring unreadable telemetry store file",
                extra={"reason": str(exc)},
            )
            return

        for device in devices:
            self._devices[device.device_key] = device
            self._readings[device.id] = []
        for reading in sorted(readings, key=lambda row: row.timestamp):
            self._readings.setdefault(reading.device_id, []).append(reading)


@lru_cache
def build_default_store(path: Optional[str] = None) -> TelemetryStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return TelemetryStore(persistence_path=persistence)
