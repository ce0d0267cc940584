"""
inbox.py - Mailbox Session
===========================
This is the ONLY file that knows about IMAP.

One MailboxSession is one authenticated connection for one run:

  open -> search_unseen -> fetch (per UID) -> mark_consumed (per UID) -> close

Messages are fetched with BODY.PEEK[] so reading never sets \\Seen. The flag is
only stored by mark_consumed(), after the pipeline reached a terminal outcome.
Anything left unseen is picked up again by the next run.

The session may be shared by pipeline workers: every protocol command goes
through one lock, since a single IMAP connection cannot interleave commands.
"""

import imaplib
import logging
import threading
from datetime import datetime, timedelta, timezone

from config import ImapSettings
from errors import MailboxConnectionError, MailboxError

log = logging.getLogger(__name__)

IMAP_ERRORS = (imaplib.IMAP4.error, OSError)


def parse_uid_search_data(data) -> list[str]:
    if not isinstance(data, list) or not data or not data[0]:
        return []
    raw = data[0]
    if isinstance(raw, bytes):
        return [uid.decode("ascii", errors="ignore") for uid in raw.split()]
    if isinstance(raw, str):
        return [uid for uid in raw.split() if uid]
    return []


def parse_fetch_body(fetch_data) -> bytes | None:
    for part in fetch_data or []:
        if isinstance(part, tuple) and len(part) >= 2 and isinstance(part[1], bytes):
            return part[1]
    return None


def imap_since_date(window: timedelta, now: datetime | None = None) -> str:
    """IMAP SINCE is day-granular: '19-Oct-2026'."""
    start = (now or datetime.now(timezone.utc)) - window
    months = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
    return f"{start.day:02d}-{months[start.month - 1]}-{start.year}"


class MailboxSession:

    def __init__(self, settings: ImapSettings):
        self.settings = settings
        self._conn: imaplib.IMAP4 | None = None
        self._selected = False
        self._fetched: set[str] = set()
        self._lock = threading.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def _connect(self) -> imaplib.IMAP4:
        s = self.settings
        if s.use_tls:
            return imaplib.IMAP4_SSL(s.host, s.port, timeout=s.timeout)
        return imaplib.IMAP4(s.host, s.port, timeout=s.timeout)

    def open(self) -> None:
        s = self.settings
        log.info(f"Connecting to IMAP {s.host}:{s.port} (tls={s.use_tls})")
        try:
            self._conn = self._connect()
        except IMAP_ERRORS as e:
            self._conn = None
            raise MailboxConnectionError(f"Could not connect to {s.host}:{s.port}: {e}") from e

        try:
            self._conn.login(s.user, s.password)
            status, data = self._conn.select(s.mailbox, readonly=False)
        except IMAP_ERRORS as e:
            self._logout()
            raise MailboxConnectionError(f"IMAP login/select failed for {s.user}: {e}") from e

        if status != "OK":
            self._logout()
            raise MailboxConnectionError(f"Could not open mailbox {s.mailbox}: {_decode(data)}")

        self._selected = True
        self._fetched.clear()
        log.info(f"Mailbox {s.mailbox} opened for {s.user}")

    def close(self) -> None:
        """Release the connection. Safe to call more than once; never raises."""
        with self._lock:
            if self._conn is None:
                return
            if self._selected:
                try:
                    self._conn.close()
                except IMAP_ERRORS as e:
                    log.warning(f"IMAP CLOSE failed: {e}")
                self._selected = False
            self._logout()
        log.info("Mailbox session closed")

    def _logout(self) -> None:
        try:
            self._conn.logout()
        except IMAP_ERRORS as e:
            log.warning(f"IMAP LOGOUT failed: {e}")
        finally:
            self._conn = None

    def __enter__(self) -> "MailboxSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ── Protocol ─────────────────────────────────────────────────────────────

    def _uid(self, command: str, *args):
        if self._conn is None:
            raise MailboxError(f"UID {command} on a closed session")
        with self._lock:
            try:
                return self._conn.uid(command, *args)
            except IMAP_ERRORS as e:
                raise MailboxError(f"UID {command} failed: {e}") from e

    def search_unseen(self, since: timedelta | None = None) -> list[str]:
        criteria = ["UNSEEN"]
        if since:
            criteria += ["SINCE", imap_since_date(since)]
        status, data = self._uid("SEARCH", None, *criteria)
        if status != "OK":
            raise MailboxError(f"UID SEARCH {' '.join(criteria)} returned {status}: {_decode(data)}")
        uids = parse_uid_search_data(data)
        log.info(f"Found {len(uids)} unseen message(s)")
        return uids

    def fetch(self, uid: str) -> bytes:
        if uid in self._fetched:
            raise MailboxError(f"UID {uid} already fetched in this session")
        self._fetched.add(uid)
        status, data = self._uid("FETCH", uid, "(BODY.PEEK[])")
        body = parse_fetch_body(data) if status == "OK" else None
        if body is None:
            raise MailboxError(f"UID FETCH {uid} returned {status} with no message body")
        return body

    def mark_consumed(self, uid: str) -> None:
        status, data = self._uid("STORE", uid, "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise MailboxError(f"UID STORE {uid} returned {status}: {_decode(data)}")


def _decode(data) -> str:
    if not isinstance(data, list):
        return ""
    parts = []
    for item in data:
        if item is None:
            continue
        parts.append(item.decode("utf-8", errors="replace") if isinstance(item, bytes) else str(item))
    return " | ".join(parts).strip()
