from __future__ import annotations

import threading
from email.message import EmailMessage

from errors import MailboxError, RegistryUnavailable
from registry import AccessCode, Identity, normalize_digits
from transport import TransportResult


def make_message(
    *,
    sender: str = "Maria Silva <maria@example.test>",
    subject: str = "REQ-CODE:123.456.789-00",
    body: str | None = "Por favor, envie o código.",
    html: str | None = None,
) -> bytes:
    message = EmailMessage()
    if sender:
        message["From"] = sender
    message["To"] = "lavanderia@example.test"
    message["Subject"] = subject
    if body is not None:
        message.set_content(body)
        if html is not None:
            message.add_alternative(html, subtype="html")
    elif html is not None:
        message.set_content(html, subtype="html")
    return message.as_bytes()


class FakeSession:
    """In-memory mailbox speaking the MailboxSession interface."""

    def __init__(self, messages: dict[str, bytes] | None = None) -> None:
        self.messages = dict(messages or {})
        self.seen: set[str] = set()
        self.fetch_failures: set[str] = set()
        self.store_failures: set[str] = set()
        self.fetched: list[str] = []
        self.open_count = 0
        self.close_count = 0
        self.search_since = []
        self.is_open = False
        self._guard = threading.Lock()

    def __enter__(self) -> FakeSession:
        self.open_count += 1
        self.is_open = True
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close_count += 1
        self.is_open = False

    def search_unseen(self, since=None) -> list[str]:
        self.search_since.append(since)
        return [uid for uid in self.messages if uid not in self.seen]

    def fetch(self, uid: str) -> bytes:
        with self._guard:
            self.fetched.append(uid)
        if uid in self.fetch_failures:
            raise MailboxError(f"UID FETCH {uid} failed")
        return self.messages[uid]

    def mark_consumed(self, uid: str) -> None:
        if uid in self.store_failures:
            raise MailboxError(f"UID STORE {uid} failed")
        self.seen.add(uid)


class FakeRegistry:

    def __init__(self, identities: dict[str, str] | None = None, code: str | None = "4821") -> None:
        self.identities = dict(identities or {})
        self.code = code
        self.unavailable = False
        self.lookups: list[str] = []
        self.code_reads = 0

    def lookup(self, identifier: str) -> Identity | None:
        self.lookups.append(identifier)
        if self.unavailable:
            raise RegistryUnavailable("Registry unavailable: connection refused")
        digits = normalize_digits(identifier)
        if digits not in self.identities:
            return None
        return Identity(identifier=digits, display_name=self.identities[digits])

    def current_access_code(self) -> AccessCode | None:
        self.code_reads += 1
        if self.unavailable:
            raise RegistryUnavailable("Registry unavailable: connection refused")
        if not self.code:
            return None
        return AccessCode(self.code)


class FakeRelay:

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []
        self.attempts = 0
        self._lock = threading.Lock()

    def send(self, to_address: str, subject: str, body_text: str, body_html: str | None = None) -> TransportResult:
        with self._lock:
            self.attempts += 1
            if self.fail:
                return TransportResult(success=False, error="Connection failed: [Errno 111] Connection refused")
            self.sent.append({"to": to_address, "subject": subject, "body": body_text, "html": body_html})
            return TransportResult(success=True)
