"""Detect automatic state transitions between a device's two latest readings."""

from __future__ import annotations

import logging
from typing import FrozenSet, List, Optional, Protocol

from models.records import AlertEvent, DeviceMode, Reading

logger = logging.getLogger(__name__)

MONITORED_FIELDS: FrozenSet[str] = frozenset({"rain_status", "servo_status"})


class LatestReadings(Protocol):
    def latest(self, device_id: str, limit: int = 2) -> List[Reading]: ...


class ChangeDetector:
    """Compare the newest reading with the one before it.

    Only readings taken in AUTO mode produce events; manual overrides are silent.
    Lookup or comparison errors are logged and treated as "no change" so the
    ingestion path that triggered the check is never interrupted.
    """

    def __init__(self, source: LatestReadings, fields: FrozenSet[str] = MONITORED_FIELDS) -> None:
        self.source = source
        self.fields = fields

    def detect(self, device_id: str) -> Optional[AlertEvent]:
        try:
            return self._detect(device_id)
        except Exception:
            logger.exception("Change detection failed", extra={"device_id": device_id})
            return None

    def _detect(self, device_id: str) -> Optional[AlertEvent]:
        recent = self.source.latest(device_id, limit=2)
        if len(recent) < 2:
            return None

        current, previous = recent[0], recent[1]
        if current.mode != DeviceMode.auto:
            return None

        changed = frozenset(
            name for name in self.fields if getattr(previous, name) != getattr(current, name)
        )
        if not changed:
            return None

        logger.info(
            "Detected automatic state change",
            extra={"device_id": device_id, "changed_fields": changed},
        )
        return AlertEvent(
            device_id=device_id,
            previous=previous,
            current=current,
            changed_fields=changed,
        )
