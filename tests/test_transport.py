from __future__ import annotations

import smtplib
from email import message_from_string

import transport
from config import SmtpSettings
from transport import MailRelay

SETTINGS = SmtpSettings(host="smtp.example.test", port=465, user="lavanderia@example.test",
                        password="smtp-password", from_address="lavanderia@example.test", timeout=3)


class FakeSMTP:
    instances: list[FakeSMTP] = []

    def __init__(self, host: str, port: int, timeout: float | None = None, *,
                 fail_with: Exception | None = None) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.fail_with = fail_with
        self.started_tls = False
        self.logged_in: tuple[str, str] | None = None
        self.sent: list[tuple[str, list[str], str]] = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> FakeSMTP:
        return self

    def __exit__(self, *exc) -> None:
        return None

    def starttls(self) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        self.logged_in = (user, password)

    def sendmail(self, from_addr: str, to_addrs: list[str], msg: str) -> dict:
        if self.fail_with:
            raise self.fail_with
        self.sent.append((from_addr, to_addrs, msg))
        return {}


def install(monkeypatch, fail_with: Exception | None = None) -> list[str]:
    FakeSMTP.instances = []
    used: list[str] = []

    def factory(kind: str):
        def build(host, port, timeout=None):
            used.append(kind)
            return FakeSMTP(host, port, timeout, fail_with=fail_with)
        return build

    monkeypatch.setattr(transport.smtplib, "SMTP_SSL", factory("ssl"))
    monkeypatch.setattr(transport.smtplib, "SMTP", factory("plain"))
    return used


def test_send_uses_implicit_tls_on_465(monkeypatch) -> None:
    used = install(monkeypatch)

    result = MailRelay(SETTINGS).send("maria@example.test", "Assunto", "texto", "<p>texto</p>")

    assert result.success is True
    assert used == ["ssl"]
    server = FakeSMTP.instances[0]
    assert server.timeout == 3
    assert server.logged_in == ("lavanderia@example.test", "smtp-password")
    from_addr, to_addrs, raw = server.sent[0]
    assert from_addr == "lavanderia@example.test"
    assert to_addrs == ["maria@example.test"]

    mime = message_from_string(raw)
    assert mime["Subject"] == "Assunto"
    assert mime["To"] == "maria@example.test"
    assert mime["Message-ID"].endswith("@example.test>")
    assert [part.get_content_type() for part in mime.get_payload()] == ["text/plain", "text/html"]


def test_send_with_starttls_on_submission_port(monkeypatch) -> None:
    used = install(monkeypatch)
    settings = SmtpSettings(host="smtp.example.test", port=587, user="u@example.test",
                            password="p", from_address="u@example.test", use_starttls=True)

    result = MailRelay(settings).send("maria@example.test", "Assunto", "texto")

    assert result.success is True
    assert used == ["plain"]
    assert FakeSMTP.instances[0].started_tls is True
    assert len(message_from_string(FakeSMTP.instances[0].sent[0][2]).get_payload()) == 1


def test_smtp_error_is_reported_not_raised(monkeypatch) -> None:
    install(monkeypatch, fail_with=smtplib.SMTPRecipientsRefused({"x@example.test": (550, b"no")}))

    result = MailRelay(SETTINGS).send("x@example.test", "Assunto", "texto")

    assert result.success is False
    assert result.error.startswith("SMTP error")


def test_connection_error_is_reported_not_raised(monkeypatch) -> None:
    def refuse(*_args, **_kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(transport.smtplib, "SMTP_SSL", refuse)

    result = MailRelay(SETTINGS).send("maria@example.test", "Assunto", "texto")

    assert result.success is False
    assert result.error.startswith("Connection failed")


def test_body_is_not_logged(monkeypatch, caplog) -> None:
    install(monkeypatch)

    with caplog.at_level("DEBUG"):
        MailRelay(SETTINGS).send("maria@example.test", "Assunto", "segredo-4821")

    assert "segredo-4821" not in caplog.text


def test_summary_hides_password() -> None:
    summary = MailRelay(SETTINGS).summary()

    assert summary["tls"] == "implicit"
    assert "smtp-password" not in str(summary)
