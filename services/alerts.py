"""Turn detected state changes into mail and webhook notification jobs."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from models.records import AlertEvent, Reading
from services.notifications import Channel, NotificationJob, NotificationQueue
from services.senders import SmtpMailSender, WebhookSender

logger = logging.getLogger(__name__)

_FIELD_LABELS = {
    "rain_status": "Rain status",
    "servo_status": "Servo status",
}


def _state(reading: Reading, field_name: str) -> str:
    value = getattr(reading, field_name)
    return getattr(value, "value", None) or str(value)


def format_alert(event: AlertEvent, device_key: Optional[str] = None) -> Tuple[str, str]:
    """Build the subject and plain-text body for an alert."""
    label = device_key or event.device_id
    changed = sorted(event.changed_fields)
    summary = ", ".join(
        f"{_FIELD_LABELS.get(name, name)} {_state(event.current, name)}" for name in changed
    )
    subject = f"[{label}] {summary}"

    lines = [
        f"Device: {label}",
        f"Observed at: {event.current.timestamp.isoformat()}",
        "",
    ]
    for name in changed:
        lines.append(
            f"{_FIELD_LABELS.get(name, name)}: "
            f"{_state(event.previous, name)} -> {_state(event.current, name)}"
        )
    if event.current.temperature is not None:
        lines.append(f"Temperature: {event.current.temperature}")
    if event.current.humidity is not None:
        lines.append(f"Humidity: {event.current.humidity}")
    return subject, "\n".join(lines)


def mail_delivery(sender: SmtpMailSender):
    def deliver(job: NotificationJob) -> Any:
        return sender.send(job.to, job.cc, job.bcc, job.subject, job.body)

    return deliver


def webhook_delivery(sender: WebhookSender):
    def deliver(job: NotificationJob) -> Any:
        payload = job.payload if job.payload is not None else {"content": job.body}
        return sender.post(job.to[0], payload)

    return deliver


class AlertDispatcher:
    """Fan an alert out to the mail and webhook queues independently."""

    def __init__(
        self,
        mail_queue: NotificationQueue,
        webhook_queue: NotificationQueue,
        mail_to: Sequence[str] = (),
        mail_cc: Sequence[str] = (),
        mail_bcc: Sequence[str] = (),
        webhook_url: Optional[str] = None,
        webhook_username: Optional[str] = None,
        closers: Sequence[Callable[[], None]] = (),
    ) -> None:
        self.mail_queue = mail_queue
        self.webhook_queue = webhook_queue
        self.mail_to = tuple(mail_to)
        self.mail_cc = tuple(mail_cc)
        self.mail_bcc = tuple(mail_bcc)
        self.webhook_url = webhook_url
        self.webhook_username = webhook_username
        self._closers = tuple(closers)

    def dispatch(self, event: AlertEvent, device_key: Optional[str] = None) -> List[Future]:
        subject, body = format_alert(event, device_key)

        mail_job = NotificationJob(
            channel=Channel.mail,
            to=self.mail_to,
            cc=self.mail_cc,
            bcc=self.mail_bcc,
            subject=subject,
            body=body,
        )
        payload: Dict[str, Any] = {"content": f"**{subject}**\n{body}"}
        if self.webhook_username:
            payload["username"] = self.webhook_username
        webhook_job = NotificationJob(
            channel=Channel.webhook,
            to=(self.webhook_url,) if self.webhook_url else (),
            subject=subject,
            body=body,
            payload=payload,
        )

        futures = [
            self.mail_queue.enqueue(mail_job),
            self.webhook_queue.enqueue(webhook_job),
        ]
        for channel, future in zip((Channel.mail, Channel.webhook), futures):
            future.add_done_callback(
                lambda f, ch=channel, key=device_key or event.device_id: _log_outcome(f, ch, key)
            )
        return futures

    def shutdown(self, wait: bool = True) -> None:
        self.mail_queue.shutdown(wait=wait)
        self.webhook_queue.shutdown(wait=wait)
        for close in self._closers:
            close()


def _log_outcome(future: Future, channel: Channel, device_key: str) -> None:
    context = {"channel": channel.value, "device_key": device_key}
    if future.cancelled():
        logger.info("Alert notification cancelled", extra=context)
        return
    error = future.exception()
    if error is not None:
        logger.warning(
            "Alert notification not delivered",
            extra={**context, "reason": str(error) or type(error).__name__},
        )
        return
    logger.info("Alert notification delivered", extra=context)
