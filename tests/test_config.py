from __future__ import annotations

from datetime import timedelta

import pytest

import config
from errors import ConfigurationError

BASE_ENV = {
    "IMAP_USER": "lavanderia@example.test",
    "IMAP_PASS": "imap-password",
    "SMTP_HOST": "smtp.example.test",
    "SMTP_USER": "lavanderia@example.test",
    "SMTP_PASS": "smtp-password",
    "REDIS_URL": "redis://localhost:6379/0",
}


def test_defaults() -> None:
    settings = config.load_settings(BASE_ENV)

    assert settings.imap.host == "imap.gmail.com"
    assert settings.imap.port == 993
    assert settings.imap.use_tls is True
    assert settings.imap.mailbox == "INBOX"
    assert settings.smtp.port == 465
    assert settings.smtp.from_address == "lavanderia@example.test"
    assert settings.registry.door_key == "door:lavanderia"
    assert settings.registry.user_key_prefix == "user:"
    assert settings.subject_prefix == "REQ-CODE"
    assert settings.search_window is None
    assert settings.workers == 4


def test_overrides() -> None:
    settings = config.load_settings({
        **BASE_ENV,
        "IMAP_HOST": "imap.example.test",
        "IMAP_PORT": "143",
        "IMAP_TLS": "false",
        "SMTP_PORT": "587",
        "SMTP_USE_TLS": "true",
        "EMAIL_FROM": "portaria@example.test",
        "DOOR_KEY": "door:academia",
        "SUBJECT_PREFIX": "PEDIDO",
        "SEARCH_WINDOW_HOURS": "48",
        "DISPATCH_WORKERS": "0",
    })

    assert settings.imap.host == "imap.example.test"
    assert settings.imap.port == 143
    assert settings.imap.use_tls is False
    assert settings.smtp.use_starttls is True
    assert settings.smtp.from_address == "portaria@example.test"
    assert settings.registry.door_key == "door:academia"
    assert settings.subject_prefix == "PEDIDO"
    assert settings.search_window == timedelta(hours=48)
    assert settings.workers == 1


def test_only_explicit_false_disables_imap_tls() -> None:
    assert config.load_settings({**BASE_ENV, "IMAP_TLS": "no"}).imap.use_tls is True
    assert config.load_settings({**BASE_ENV, "IMAP_TLS": "FALSE"}).imap.use_tls is False


def test_missing_required_values_are_all_named() -> None:
    env = {key: value for key, value in BASE_ENV.items() if key not in ("IMAP_PASS", "REDIS_URL")}

    with pytest.raises(ConfigurationError) as excinfo:
        config.load_settings(env)

    assert "IMAP_PASS" in str(excinfo.value)
    assert "REDIS_URL" in str(excinfo.value)


def test_blank_required_value_counts_as_missing() -> None:
    with pytest.raises(ConfigurationError):
        config.load_settings({**BASE_ENV, "SMTP_HOST": "  "})


@pytest.mark.parametrize("name", ["IMAP_PORT", "SMTP_TIMEOUT", "SEARCH_WINDOW_HOURS", "DISPATCH_WORKERS"])
def test_non_numeric_values_raise(name: str) -> None:
    with pytest.raises(ConfigurationError):
        config.load_settings({**BASE_ENV, name: "soon"})


@pytest.mark.parametrize("value", ["inf", "nan", "1e12", "-5"])
def test_out_of_range_search_window_raises(value: str) -> None:
    with pytest.raises(ConfigurationError):
        config.load_settings({**BASE_ENV, "SEARCH_WINDOW_HOURS": value})


def test_window_from_hours() -> None:
    assert config.window_from_hours(0) is None
    assert config.window_from_hours(6) == timedelta(hours=6)
    with pytest.raises(ValueError):
        config.window_from_hours(float("inf"))
    with pytest.raises(ValueError):
        config.window_from_hours(config.MAX_WINDOW_HOURS + 1)


def test_summary_has_no_secrets() -> None:
    summary = config.summary(config.load_settings(BASE_ENV))

    assert "imap-password" not in str(summary)
    assert "smtp-password" not in str(summary)
    assert summary["imap"]["host"] == "imap.gmail.com"
