"""
config.py - Service Configuration
==================================
All settings come from environment variables. Nothing here opens a socket:
load_settings() either returns a complete Settings or raises
ConfigurationError, so a run fails before any network I/O.

Mailbox (IMAP):
  IMAP_HOST      - IMAP server hostname (default: imap.gmail.com)
  IMAP_PORT      - IMAP port (default: 993)
  IMAP_USER      - Mailbox login (required)
  IMAP_PASS      - Mailbox password / app password (required)
  IMAP_TLS       - Implicit TLS (default: true, only "false" disables it)
  IMAP_MAILBOX   - Folder to poll (default: INBOX)
  IMAP_TIMEOUT   - Socket timeout in seconds (default: 30)

Relay (SMTP):
  SMTP_HOST, SMTP_USER, SMTP_PASS (required)
  SMTP_PORT      - default 465 (implicit TLS); other ports use plain SMTP
  SMTP_USE_TLS   - STARTTLS on non-465 ports (default: false)
  EMAIL_FROM     - From address (default: SMTP_USER)
  SMTP_TIMEOUT   - seconds (default: 10)

Registry (Redis):
  REDIS_URL        - redis:// or rediss:// URL including credentials (required)
  REDIS_TIMEOUT    - socket timeout in seconds (default: 5)
  DOOR_KEY         - key holding the current access code (default: door:lavanderia)
  USER_KEY_PREFIX  - identity key prefix (default: user:)

Dispatch:
  SUBJECT_PREFIX       - request tag token (default: REQ-CODE)
  SEARCH_WINDOW_HOURS  - only look at mail newer than this (default: unset)
  DISPATCH_WORKERS     - per-run worker pool size (default: 4)
"""

import math
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from errors import ConfigurationError

DEFAULT_IMAP_HOST = "imap.gmail.com"
DEFAULT_IMAP_PORT = 993
DEFAULT_SMTP_PORT = 465
DEFAULT_DOOR_KEY = "door:lavanderia"
DEFAULT_USER_KEY_PREFIX = "user:"
DEFAULT_SUBJECT_PREFIX = "REQ-CODE"
DEFAULT_WORKERS = 4
MAX_WINDOW_HOURS = 24 * 366 * 10


@dataclass(frozen=True)
class ImapSettings:
    host: str
    port: int
    user: str
    password: str
    use_tls: bool = True
    mailbox: str = "INBOX"
    timeout: float = 30.0


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: str
    password: str
    from_address: str
    use_starttls: bool = False
    timeout: float = 10.0


@dataclass(frozen=True)
class RegistrySettings:
    url: str
    timeout: float = 5.0
    door_key: str = DEFAULT_DOOR_KEY
    user_key_prefix: str = DEFAULT_USER_KEY_PREFIX


@dataclass(frozen=True)
class Settings:
    imap: ImapSettings
    smtp: SmtpSettings
    registry: RegistrySettings
    subject_prefix: str = DEFAULT_SUBJECT_PREFIX
    search_window: timedelta | None = None
    workers: int = DEFAULT_WORKERS


REQUIRED = ("IMAP_USER", "IMAP_PASS", "SMTP_HOST", "SMTP_USER", "SMTP_PASS", "REDIS_URL")


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if not math.isfinite(value) or value < 0:
        raise ConfigurationError(f"{name} must be a finite, non-negative number, got {raw!r}")
    return value


def window_from_hours(hours: float) -> timedelta | None:
    """Search window for a run. 0 means no window; ValueError for anything out of range."""
    if not math.isfinite(hours) or hours < 0:
        raise ValueError(f"window must be a finite, non-negative number of hours, got {hours!r}")
    if hours > MAX_WINDOW_HOURS:
        raise ValueError(f"window must not exceed {MAX_WINDOW_HOURS} hours, got {hours!r}")
    return timedelta(hours=hours) if hours else None


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw not in ("false", "0", "no", "off")


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment. Raises ConfigurationError."""
    if env is None:
        env = os.environ

    missing = [name for name in REQUIRED if not env.get(name, "").strip()]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    window_hours = _number(env, "SEARCH_WINDOW_HOURS", None, float)
    workers = _number(env, "DISPATCH_WORKERS", DEFAULT_WORKERS, int)
    try:
        search_window = window_from_hours(window_hours) if window_hours is not None else None
    except ValueError as e:
        raise ConfigurationError(f"SEARCH_WINDOW_HOURS: {e}") from None

    return Settings(
        imap=ImapSettings(
            host=env.get("IMAP_HOST", "").strip() or DEFAULT_IMAP_HOST,
            port=_number(env, "IMAP_PORT", DEFAULT_IMAP_PORT, int),
            user=env["IMAP_USER"],
            password=env["IMAP_PASS"],
            # Only an explicit "false" turns TLS off
            use_tls=env.get("IMAP_TLS", "true").strip().lower() != "false",
            mailbox=env.get("IMAP_MAILBOX", "").strip() or "INBOX",
            timeout=_number(env, "IMAP_TIMEOUT", 30.0, float),
        ),
        smtp=SmtpSettings(
            host=env["SMTP_HOST"].strip(),
            port=_number(env, "SMTP_PORT", DEFAULT_SMTP_PORT, int),
            user=env["SMTP_USER"],
            password=env["SMTP_PASS"],
            from_address=env.get("EMAIL_FROM", "").strip() or env["SMTP_USER"],
            use_starttls=_flag(env, "SMTP_USE_TLS", False),
            timeout=_number(env, "SMTP_TIMEOUT", 10.0, float),
        ),
        registry=RegistrySettings(
            url=env["REDIS_URL"].strip(),
            timeout=_number(env, "REDIS_TIMEOUT", 5.0, float),
            door_key=env.get("DOOR_KEY", "").strip() or DEFAULT_DOOR_KEY,
            user_key_prefix=env.get("USER_KEY_PREFIX", "").strip() or DEFAULT_USER_KEY_PREFIX,
        ),
        subject_prefix=env.get("SUBJECT_PREFIX", "").strip() or DEFAULT_SUBJECT_PREFIX,
        search_window=search_window,
        workers=max(1, workers),
    )


def summary(settings: Settings) -> dict:
    """Non-secret view of the settings for the health endpoint. SMTP: MailRelay.summary()."""
    return {
        "imap": {
            "host": settings.imap.host,
            "port": settings.imap.port,
            "tls": settings.imap.use_tls,
            "mailbox": settings.imap.mailbox,
        },
        "registry": {
            "door_key": settings.registry.door_key,
            "user_key_prefix": settings.registry.user_key_prefix,
        },
        "subject_prefix": settings.subject_prefix,
        "search_window_hours": (
            settings.search_window.total_seconds() / 3600 if settings.search_window else None
        ),
        "workers": settings.workers,
    }
