"""Tests for alert formatting and per-channel dispatch."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from models.records import AlertEvent, DeviceMode, RainStatus, Reading, ServoStatus
from services.alerts import AlertDispatcher, format_alert, mail_delivery, webhook_delivery
from services.notifications import Channel, NotificationJob, NotificationQueue

_START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _event() -> AlertEvent:
    previous = Reading(
        device_id="dev-1",
        timestamp=_START,
        temperature=22.0,
        humidity=61.0,
        rain_status=RainStatus.dry,
        servo_status=ServoStatus.open,
        mode=DeviceMode.auto,
    )
    current = Reading(
        device_id="dev-1",
        timestamp=_START + timedelta(seconds=5),
        temperature=21.5,
        humidity=80.0,
        rain_status=RainStatus.rain,
        servo_status=ServoStatus.open,
        mode=DeviceMode.auto,
    )
    return AlertEvent(
        device_id="dev-1",
        previous=previous,
        current=current,
        changed_fields=frozenset({"rain_status"}),
    )


class StubMailSender:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: List[tuple] = []

    def send(self, to, cc, bcc, subject, body):
        self.calls.append((to, cc, bcc, subject, body))
        if self.error is not None:
            raise self.error
        return {"message_id": "<1@test>"}


class StubWebhookSender:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def post(self, url, payload):
        self.calls.append((url, payload))
        return {"status_code": 204}


@pytest.fixture()
def queues():
    created: List[NotificationQueue] = []

    def build(deliver, name):
        queue = NotificationQueue(deliver, name=name, rate_limit=10)
        created.append(queue)
        return queue

    yield build
    for queue in created:
        queue.shutdown()


def test_format_alert_lists_transition() -> None:
    subject, body = format_alert(_event(), device_key="raph_device")

    assert subject == "[raph_device] Rain status RAIN"
    assert "Rain status: DRY -> RAIN" in body
    assert "Device: raph_device" in body
    assert "Humidity: 80.0" in body


def test_dispatch_enqueues_one_mail_and_one_webhook_job(queues) -> None:
    mail = StubMailSender()
    webhook = StubWebhookSender()
    dispatcher = AlertDispatcher(
        mail_queue=queues(mail_delivery(mail), "mail"),
        webhook_queue=queues(webhook_delivery(webhook), "webhook"),
        mail_to=["ops@example.com"],
        mail_bcc=["audit@example.com"],
        webhook_url="https://hooks.example.com/alerts",
        webhook_username="telemetry-bot",
    )

    futures = dispatcher.dispatch(_event(), device_key="raph_device")

    assert len(futures) == 2
    for future in futures:
        future.result(timeout=5)
    assert len(mail.calls) == 1
    to, cc, bcc, subject, _body = mail.calls[0]
    assert to == ("ops@example.com",)
    assert bcc == ("audit@example.com",)
    assert subject.startswith("[raph_device]")
    assert len(webhook.calls) == 1
    url, payload = webhook.calls[0]
    assert url == "https://hooks.example.com/alerts"
    assert payload["username"] == "telemetry-bot"
    assert "Rain status RAIN" in payload["content"]


def test_mail_failure_does_not_affect_webhook(queues) -> None:
    mail = StubMailSender(error=ConnectionRefusedError("smtp down"))
    webhook = StubWebhookSender()
    dispatcher = AlertDispatcher(
        mail_queue=queues(mail_delivery(mail), "mail"),
        webhook_queue=queues(webhook_delivery(webhook), "webhook"),
        mail_to=["ops@example.com"],
        webhook_url="https://hooks.example.com/alerts",
    )

    mail_future, webhook_future = dispatcher.dispatch(_event())

    with pytest.raises(ConnectionRefusedError):
        mail_future.result(timeout=5)
    assert webhook_future.result(timeout=5) == {"status_code": 204}


def test_unconfigured_webhook_is_rejected_without_blocking_mail(queues) -> None:
    mail = StubMailSender()
    webhook = StubWebhookSender()
    dispatcher = AlertDispatcher(
        mail_queue=queues(mail_delivery(mail), "mail"),
        webhook_queue=queues(webhook_delivery(webhook), "webhook"),
        mail_to=["ops@example.com"],
    )

    mail_future, webhook_future = dispatcher.dispatch(_event())

    assert mail_future.result(timeout=5) == {"message_id": "<1@test>"}
    with pytest.raises(ValueError):
        webhook_future.result(timeout=5)
    assert webhook.calls == []


def test_webhook_delivery_falls_back_to_body_payload() -> None:
    webhook = StubWebhookSender()
    job = NotificationJob(
        channel=Channel.webhook,
        to=("https://hooks.example.com/x",),
        subject="s",
        body="plain body",
    )

    webhook_delivery(webhook)(job)

    assert webhook.calls == [("https://hooks.example.com/x", {"content": "plain body"})]
