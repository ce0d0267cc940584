"""
message_parser.py - Message Parser
===================================
Turns the raw RFC 822 bytes the mailbox delivered into the three fields the
pipeline cares about: who sent it, the subject, and a plain-text body.

The body is best-effort: HTML-only or empty messages give body_text="".
A message with no usable From address cannot be answered, so it raises
ParseError and the pipeline drops it.
"""

import logging
from dataclasses import dataclass
from email import policy
from email.parser import BytesParser
from email.utils import parseaddr

from errors import ParseError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedMessage:
    sender: str
    subject: str
    body_text: str


def _header(message, name: str) -> str:
    value = message.get(name)
    if value is None:
        return ""
    return " ".join(str(value).split())


def extract_sender(from_header: str) -> str:
    _name, address = parseaddr(from_header)
    address = address.strip().lower()
    if "@" not in address:
        return ""
    return address


def extract_body_text(message) -> str:
    try:
        part = message.get_body(preferencelist=("plain",))
        if part is None:
            return ""
        return part.get_content().strip()
    except Exception as e:
        # Unknown charset or broken transfer encoding: body is only advisory
        log.debug(f"Could not decode text body: {e}")
        return ""


def parse(raw: bytes) -> ParsedMessage:
    if not isinstance(raw, (bytes, bytearray)) or not raw:
        raise ParseError("Empty or non-bytes message")

    try:
        message = BytesParser(policy=policy.default).parsebytes(bytes(raw))
        sender = extract_sender(_header(message, "From"))
        subject = _header(message, "Subject")
    except Exception as e:
        # email._header_value_parser raises assorted errors on broken envelopes
        raise ParseError(f"Unparsable message envelope: {e}") from e

    if not sender:
        raise ParseError("Message has no sender address")

    return ParsedMessage(sender=sender, subject=subject, body_text=extract_body_text(message))
