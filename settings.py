from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_STORE_PATH_ENV = "TELEMETRY_STORE_PATH"
_POINT_CAP_ENV = "SERIES_POINT_CAP"
_LOCAL_MULTIPLIER_ENV = "LOCAL_AGGREGATION_MULTIPLIER"
_DEFAULT_MINUTES_ENV = "DEFAULT_WINDOW_MINUTES"
_RATE_LIMIT_ENV = "NOTIFY_RATE_LIMIT"
_RATE_WINDOW_ENV = "NOTIFY_RATE_WINDOW_SECONDS"
_SUPPRESSION_ENV = "NOTIFY_SUPPRESSION_SECONDS"
_SMTP_HOST_ENV = "SMTP_HOST"
_SMTP_PORT_ENV = "SMTP_PORT"
_SMTP_SECURE_ENV = "SMTP_SECURE"
_SMTP_USER_ENV = "SMTP_USER"
_SMTP_PASS_ENV = "SMTP_PASS"
_MAIL_FROM_ENV = "MAIL_FROM"
_MAIL_FROM_NAME_ENV = "MAIL_FROM_NAME"
_MAIL_TO_ENV = "ALERT_MAIL_TO"
_MAIL_CC_ENV = "ALERT_MAIL_CC"
_MAIL_BCC_ENV = "ALERT_MAIL_BCC"
_WEBHOOK_URL_ENV = "ALERT_WEBHOOK_URL"
_WEBHOOK_USERNAME_ENV = "ALERT_WEBHOOK_USERNAME"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    store_path: Optional[str]
    point_cap: int
    local_multiplier: int
    default_window_minutes: int
    rate_limit: int
    rate_window_seconds: float
    suppression_seconds: float
    smtp_host: Optional[str]
    smtp_port: Optional[int]
    smtp_secure: bool
    smtp_user: Optional[str]
    smtp_password: Optional[str]
    mail_from: Optional[str]
    mail_from_name: Optional[str]
    alert_mail_to: Tuple[str, ...]
    alert_mail_cc: Tuple[str, ...]
    alert_mail_bcc: Tuple[str, ...]
    webhook_url: Optional[str]
    webhook_username: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_optional_port() -> Optional[int]:
    port = _read_positive_int(_SMTP_PORT_ENV, 0)
    return port or None


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _read_address_list(name: str) -> Tuple[str, ...]:
    value = os.getenv(name) or ""
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/telemetry_db.json"),
        point_cap=_read_positive_int(_POINT_CAP_ENV, 200),
        local_multiplier=_read_positive_int(_LOCAL_MULTIPLIER_ENV, 20),
        default_window_minutes=_read_positive_int(_DEFAULT_MINUTES_ENV, 30),
        rate_limit=_read_positive_int(_RATE_LIMIT_ENV, 3),
        rate_window_seconds=_read_positive_float(_RATE_WINDOW_ENV, 60.0),
        suppression_seconds=_read_positive_float(_SUPPRESSION_ENV, 60.0),
        smtp_host=_read_optional_env(_SMTP_HOST_ENV, None),
        smtp_port=_read_optional_port(),
        smtp_secure=_read_bool(_SMTP_SECURE_ENV, False),
        smtp_user=_read_optional_env(_SMTP_USER_ENV, None),
        smtp_password=_read_optional_env(_SMTP_PASS_ENV, None),
        mail_from=_read_optional_env(_MAIL_FROM_ENV, None),
        mail_from_name=_read_optional_env(_MAIL_FROM_NAME_ENV, None),
        alert_mail_to=_read_address_list(_MAIL_TO_ENV),
        alert_mail_cc=_read_address_list(_MAIL_CC_ENV),
        alert_mail_bcc=_read_address_list(_MAIL_BCC_ENV),
        webhook_url=_read_optional_env(_WEBHOOK_URL_ENV, None),
        webhook_username=_read_optional_env(_WEBHOOK_USERNAME_ENV, None),
        log_level=_read_log_level("INFO"),
    )
