"""Outbound mail and webhook transports used by the notification queues."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Dict, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)


class TransportNotConfiguredError(RuntimeError):
    """A sender was asked to deliver without the settings it needs."""


class SmtpMailSender:
    """Plain-text mail over SMTP (implicit TLS when ``secure``)."""

    def __init__(
        self,
        host: Optional[str],
        port: Optional[int] = None,
        secure: bool = False,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_address: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port or (smtplib.SMTP_SSL_PORT if secure else smtplib.SMTP_PORT)
        self.secure = secure
        self.username = username
        self.password = password
        self.from_address = from_address or f"no-reply@{host or 'localhost'}"
        self.from_name = from_name
        self.timeout = timeout

    @property
    def sender(self) -> str:
        if self.from_name:
            return formataddr((self.from_name, self.from_address))
        return self.from_address

    def send(
        self,
        to: Sequence[str],
        cc: Sequence[str],
        bcc: Sequence[str],
        subject: str,
        body: str,
    ) -> Dict[str, Any]:
        if not self.host:
            raise TransportNotConfiguredError("Mail transport is not configured (SMTP_HOST unset).")

        message = EmailMessage()
        message["From"] = self.sender
        if to:
            message["To"] = ", ".join(to)
        if cc:
            message["Cc"] = ", ".join(cc)
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        message.set_content(body)

        recipients = [*to, *cc, *bcc]
        smtp_class = smtplib.SMTP_SSL if self.secure else smtplib.SMTP
        with smtp_class(self.host, self.port, timeout=self.timeout) as client:
            if self.username or self.password:
                client.login(self.username or "", self.password or "")
            refused = client.send_message(message, to_addrs=recipients)

        accepted = [address for address in recipients if address not in refused]
        logger.info("Email sent", extra={"channel": "mail", "recipients": accepted})
        return {
            "message_id": message["Message-ID"],
            "accepted": accepted,
            "rejected": sorted(refused),
        }


class WebhookSender:
    """JSON webhook poster; non-2xx responses raise ``httpx.HTTPStatusError``."""

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 10.0) -> None:
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def post(self, url: str, payload: Dict[str, Any]) -> Any:
        response = self._client.post(url, json=payload)
        response.raise_for_status()
        if not response.content:
            return {"status_code": response.status_code}
        try:
            return response.json()
        except ValueError:
            return response.text
