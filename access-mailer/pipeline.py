"""
pipeline.py - Dispatch Pipeline
================================
Drives every unseen message through the same per-message state machine, then
decides whether the message may be marked seen.

Per message (process_message):
1. Fetch raw bytes            MailboxError -> failed_fetch       (kept unseen)
2. Parse envelope             ParseError   -> skipped_malformed  (consumed)
3. Match subject tag          no tag       -> skipped_no_tag     (consumed)
4. Look up identity           RegistryError-> failed_registry    (kept unseen)
   - not registered: send rejection -> rejected (consumed) / failed_relay
5. Read access code           not set      -> skipped_no_code    (kept unseen)
6. Send success reply                      -> replied (consumed) / failed_relay

A message is only marked seen after a terminal outcome. Everything else stays
unseen and the next run tries again; re-sending a reply is harmless, losing
one is not.

Per run (run): open session -> search unseen -> dispatch each UID (optionally
on a small worker pool) -> close session. One bad message never stops the
batch; only a mailbox connection/search failure aborts the run.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta

import message_parser
import templates
from errors import MailboxError, ParseError, RegistryError

log = logging.getLogger(__name__)

REPLIED = "replied"
REJECTED = "rejected"
SKIPPED_MALFORMED = "skipped_malformed"
SKIPPED_NO_TAG = "skipped_no_tag"
SKIPPED_NO_CODE = "skipped_no_code"
FAILED_FETCH = "failed_fetch"
FAILED_REGISTRY = "failed_registry"
FAILED_RELAY = "failed_relay"
FAILED_INTERNAL = "failed_internal"
CANCELLED = "cancelled"

# Outcomes after which the message is marked \Seen
TERMINAL = {REPLIED, REJECTED, SKIPPED_MALFORMED, SKIPPED_NO_TAG}


@dataclass
class InboundRequest:
    handle: str
    sender: str
    subject: str
    body_text: str


@dataclass
class DispatchOutcome:
    handle: str
    kind: str
    identifier: str | None = None
    sender: str | None = None
    reason: str | None = None
    consumed: bool = False

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL

    def as_dict(self) -> dict:
        return {
            "uid": self.handle,
            "outcome": self.kind,
            "identifier": self.identifier,
            "reason": self.reason,
            "consumed": self.consumed,
        }


@dataclass
class RunReport:
    run_id: str
    found: int = 0
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for outcome in self.outcomes:
            counts[outcome.kind] = counts.get(outcome.kind, 0) + 1
        return counts

    @property
    def consumed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.consumed)

    @property
    def pending(self) -> int:
        return len(self.outcomes) - self.consumed

    def as_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "found": self.found,
            "consumed": self.consumed,
            "pending": self.pending,
            "counts": self.counts(),
            "messages": [outcome.as_dict() for outcome in self.outcomes],
        }


def _cancelled(stop_event: threading.Event | None) -> bool:
    return stop_event is not None and stop_event.is_set()


def process_message(handle: str, session, registry, relay, matcher,
                    stop_event: threading.Event | None = None) -> DispatchOutcome:
    """Run one message through the state machine. Never marks it seen."""
    if _cancelled(stop_event):
        return DispatchOutcome(handle, CANCELLED, reason="Run cancelled before fetch")

    # ── Step 1: Fetch ─────────────────────────────────────────────────────────
    try:
        raw = session.fetch(handle)
    except MailboxError as e:
        return DispatchOutcome(handle, FAILED_FETCH, reason=str(e))

    # ── Step 2: Parse ─────────────────────────────────────────────────────────
    try:
        parsed = message_parser.parse(raw)
    except ParseError as e:
        return DispatchOutcome(handle, SKIPPED_MALFORMED, reason=str(e))

    request = InboundRequest(
        handle=handle,
        sender=parsed.sender,
        subject=parsed.subject,
        body_text=parsed.body_text,
    )
    log.info(f"[{handle}] Received from {request.sender} subject={request.subject!r}")

    # ── Step 3: Match subject tag ─────────────────────────────────────────────
    tag = matcher.match(request.subject)
    if tag is None:
        return DispatchOutcome(handle, SKIPPED_NO_TAG, sender=request.sender,
                               reason="Subject does not carry a request tag")
    identifier = tag.identifier

    def outcome(kind: str, reason: str) -> DispatchOutcome:
        return DispatchOutcome(handle, kind, identifier=identifier, sender=request.sender, reason=reason)

    if _cancelled(stop_event):
        return outcome(CANCELLED, "Run cancelled before registry lookup")

    # ── Step 4: Look up identity ──────────────────────────────────────────────
    try:
        identity = registry.lookup(identifier)
    except RegistryError as e:
        return outcome(FAILED_REGISTRY, str(e))

    if identity is None:
        if _cancelled(stop_event):
            return outcome(CANCELLED, "Run cancelled before rejection reply")
        subject, body_text, body_html = templates.render_rejection(identifier)
        result = relay.send(request.sender, subject, body_text, body_html)
        if not result.success:
            return outcome(FAILED_RELAY, result.error or "Relay failed")
        return outcome(REJECTED, "Identifier not registered; rejection sent")

    # ── Step 5: Read access code ──────────────────────────────────────────────
    try:
        code = registry.current_access_code()
    except RegistryError as e:
        return outcome(FAILED_REGISTRY, str(e))

    if code is None:
        log.warning(f"[{handle}] No access code configured; request for {identifier} left pending")
        return outcome(SKIPPED_NO_CODE, "No access code configured")

    if _cancelled(stop_event):
        return outcome(CANCELLED, "Run cancelled before success reply")

    # ── Step 6: Send success reply ────────────────────────────────────────────
    subject, body_text, body_html = templates.render_success(identity.display_name, code.value)
    result = relay.send(request.sender, subject, body_text, body_html)
    if not result.success:
        return outcome(FAILED_RELAY, result.error or "Relay failed")
    return outcome(REPLIED, "Access code sent")


def _audit(run_id: str, result: DispatchOutcome) -> None:
    line = (f"[{run_id}:{result.handle}] outcome={result.kind} "
            f"identifier={result.identifier or '-'} consumed={result.consumed} "
            f"reason={result.reason or '-'}")
    if result.terminal or result.kind == CANCELLED:
        log.info(line)
    else:
        log.warning(line)


def _dispatch(run_id: str, handle: str, session, registry, relay, matcher,
              stop_event: threading.Event | None) -> DispatchOutcome:
    try:
        result = process_message(handle, session, registry, relay, matcher, stop_event)
    except Exception as e:
        log.exception(f"[{run_id}:{handle}] Unexpected error while processing message")
        result = DispatchOutcome(handle, FAILED_INTERNAL, reason=f"{type(e).__name__}: {e}")

    if result.terminal:
        try:
            session.mark_consumed(handle)
            result.consumed = True
        except MailboxError as e:
            log.error(f"[{run_id}:{handle}] Could not mark message seen: {e}")

    _audit(run_id, result)
    return result


def run(session, registry, relay, matcher, since: timedelta | None = None,
        workers: int = 1, stop_event: threading.Event | None = None) -> RunReport:
    """
    One open/search/dispatch/close cycle.
    Raises MailboxConnectionError (open) or MailboxError (search); the
    session is closed on every path.
    """
    report = RunReport(run_id=uuid.uuid4().hex[:8])
    log.info(f"[{report.run_id}] Checking mailbox (window={since or 'none'}, workers={workers})")

    with session:
        handles = session.search_unseen(since)
        report.found = len(handles)
        if not handles:
            log.info(f"[{report.run_id}] No new mail to process")
            return report

        if workers <= 1 or len(handles) == 1:
            for handle in handles:
                report.outcomes.append(
                    _dispatch(report.run_id, handle, session, registry, relay, matcher, stop_event))
        else:
            with ThreadPoolExecutor(max_workers=min(workers, len(handles)),
                                    thread_name_prefix="dispatch") as pool:
                futures = [
                    pool.submit(_dispatch, report.run_id, handle, session, registry, relay, matcher, stop_event)
                    for handle in handles
                ]
                report.outcomes.extend(future.result() for future in futures)

    log.info(f"[{report.run_id}] Done: found={report.found} consumed={report.consumed} "
             f"pending={report.pending} counts={report.counts()}")
    return report
