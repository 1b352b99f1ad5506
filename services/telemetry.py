"""Query and ingestion entry points for device telemetry."""

from __future__ import annotations

import logging
import math
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple, Union

from datastore.telemetry_store import TelemetryStore, build_default_store
from models.records import (
    AlertEvent,
    Device,
    DeviceMode,
    DownsampledPoint,
    Metric,
    RainStatus,
    Reading,
    ServoStatus,
    parse_metric,
)
from services.aggregator import AdaptiveAggregator
from services.alerts import AlertDispatcher, mail_delivery, webhook_delivery
from services.change_detector import ChangeDetector
from services.notifications import NotificationQueue
from services.senders import SmtpMailSender, WebhookSender
from settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MINUTES = 30


def bounded_minutes(minutes: Optional[float], default: int = DEFAULT_WINDOW_MINUTES) -> int:
    """Missing, non-finite or non-positive windows use ``default``; others floor to >= 1."""
    if minutes is None or not math.isfinite(minutes) or minutes <= 0:
        return default
    return max(1, math.floor(minutes))


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class TelemetryService:
    """Coordinates the store, series aggregation and alerting on ingest."""

    def __init__(
        self,
        store: TelemetryStore,
        aggregator: AdaptiveAggregator,
        detector: ChangeDetector,
        dispatcher: Optional[AlertDispatcher] = None,
        default_minutes: int = DEFAULT_WINDOW_MINUTES,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.aggregator = aggregator
        self.detector = detector
        self.dispatcher = dispatcher
        self.default_minutes = default_minutes
        self._clock = clock

    def register_device(self, device_key: str, device_name: Optional[str] = None) -> Device:
        device = self.store.register_device(device_key, device_name)
        logger.info("Registered device", extra={"device_key": device.device_key, "device_id": device.id})
        return device

    def list_devices(self) -> List[Device]:
        return self.store.list_devices()

    def series(
        self,
        device_key: str,
        metric: Union[Metric, str],
        minutes: Optional[float] = None,
    ) -> List[DownsampledPoint]:
        """Bounded, ascending series of one metric over the trailing window."""
        selected, device_id, since = self._resolve(device_key, minutes, metric)
        if device_id is None:
            return []
        points = self.aggregator.series(device_id, since, selected)
        logger.debug(
            "Built series",
            extra={"device_key": device_key, "metric": selected.value, "point_count": len(points)},
        )
        return points

    def all_series(
        self,
        device_key: str,
        minutes: Optional[float] = None,
    ) -> Dict[Metric, List[DownsampledPoint]]:
        _, device_id, since = self._resolve(device_key, minutes)
        if device_id is None:
            return {metric: [] for metric in Metric}
        return {metric: self.aggregator.series(device_id, since, metric) for metric in Metric}

    def ingest(
        self,
        device_key: str,
        *,
        temperature: Optional[float] = None,
        humidity: Optional[float] = None,
        light_intensity: Optional[float] = None,
        rain_status: Optional[RainStatus] = None,
        servo_status: Optional[ServoStatus] = None,
        mode: Optional[DeviceMode] = None,
        timestamp: Optional[datetime] = None,
    ) -> Reading:
        """Store a reading for a registered device and run the ingestion hook."""
        if not device_key:
            raise ValueError("deviceKey is required")
        device_id = self.store.find_device_id(device_key)
        if device_id is None:
            raise KeyError(f"Device {device_key!r} not found.")

        reading = Reading(
            device_id=device_id,
            timestamp=_as_utc(timestamp) if timestamp else self._clock(),
            temperature=temperature,
            humidity=humidity,
            light_intensity=light_intensity,
            rain_status=rain_status,
            servo_status=servo_status,
            mode=mode,
        )
        self.store.put_reading(reading)
        logger.info("Telemetry saved", extra={"device_key": device_key, "device_id": device_id})
        self.on_reading_stored(device_id, device_key=device_key, reading=reading)
        return reading

    def on_reading_stored(
        self,
        device_id: str,
        device_key: Optional[str] = None,
        reading: Optional[Reading] = None,
    ) -> List[Future]:
        """Check the latest transition and enqueue one mail and one webhook job for it.

        A back-dated ``reading`` that did not become the newest stored one is
        skipped, since the latest pair was already checked when it arrived.
        """
        if reading is not None and not self._is_newest(device_id, reading):
            logger.debug(
                "Skipping change detection for back-dated reading",
                extra={"device_id": device_id, "device_key": device_key},
            )
            return []
        event: Optional[AlertEvent] = self.detector.detect(device_id)
        if event is None or self.dispatcher is None:
            return []
        try:
            return self.dispatcher.dispatch(event, device_key)
        except Exception:
            logger.exception(
                "Failed to enqueue alert notifications",
                extra={"device_id": device_id, "device_key": device_key},
            )
            return []

    def shutdown(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown()
        self.store.flush()

    def _is_newest(self, device_id: str, reading: Reading) -> bool:
        newest = self.store.latest(device_id, limit=1)
        return bool(newest) and newest[0] is reading

    def _resolve(
        self,
        device_key: str,
        minutes: Optional[float],
        metric: Union[Metric, str, None] = None,
    ) -> Tuple[Optional[Metric], Optional[str], datetime]:
        if not device_key:
            raise ValueError("deviceKey is required")
        selected = None
        if metric is not None:
            selected = metric if isinstance(metric, Metric) else parse_metric(metric)
        window = bounded_minutes(minutes, self.default_minutes)
        since = self._clock() - timedelta(minutes=window)
        return selected, self.store.find_device_id(device_key), since


@lru_cache
def build_default_service() -> TelemetryService:
    """Factory that wires the service from environment settings."""
    settings = get_settings()
    store = build_default_store()
    queue_options = dict(
        rate_limit=settings.rate_limit,
        rate_window=settings.rate_window_seconds,
        suppression=settings.suppression_seconds,
    )
    webhook_sender = WebhookSender()
    mail_sender = SmtpMailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        secure=settings.smtp_secure,
        username=settings.smtp_user,
        password=settings.smtp_password,
        from_address=settings.mail_from,
        from_name=settings.mail_from_name,
    )
    dispatcher = AlertDispatcher(
        mail_queue=NotificationQueue(mail_delivery(mail_sender), name="mail", **queue_options),
        webhook_queue=NotificationQueue(
            webhook_delivery(webhook_sender), name="webhook", **queue_options
        ),
        mail_to=settings.alert_mail_to,
        mail_cc=settings.alert_mail_cc,
        mail_bcc=settings.alert_mail_bcc,
        webhook_url=settings.webhook_url,
        webhook_username=settings.webhook_username,
        closers=(webhook_sender.close,),
    )
    return TelemetryService(
        store=store,
        aggregator=AdaptiveAggregator(
            store, cap=settings.point_cap, multiplier=settings.local_multiplier
        ),
        detector=ChangeDetector(store),
        dispatcher=dispatcher,
        default_minutes=settings.default_window_minutes,
    )
