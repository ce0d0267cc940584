"""
matcher.py - Request Matcher
=============================
Pulls the correlation tag out of a subject line.

Expected subject: REQ-CODE:<CPF>, e.g. "REQ-CODE:123.456.789-00".
The separator between prefix and identifier may be any run of ':', '-' or
spaces (including none). The captured run is reduced to digits only.

Almost all inbox traffic is unrelated mail, so "no match" is the normal
answer and is returned as None, never raised or logged as a failure.
"""

import logging
import re
from dataclasses import dataclass

from config import DEFAULT_SUBJECT_PREFIX
from registry import normalize_digits

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelationTag:
    identifier: str


def compile_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(re.escape(prefix) + r"[:\- ]*([0-9.\-]+)", re.IGNORECASE)


class RequestMatcher:

    def __init__(self, prefix: str = DEFAULT_SUBJECT_PREFIX):
        self.prefix = prefix
        self.pattern = compile_pattern(prefix)

    def match(self, subject: str | None) -> CorrelationTag | None:
        found = self.pattern.search(subject or "")
        if not found:
            return None

        identifier = normalize_digits(found.group(1))
        if not identifier:
            # "REQ-CODE: ---" carries no identifier at all
            log.debug(f"Tag without digits in subject {subject!r}")
            return None
        return CorrelationTag(identifier=identifier)


def match(subject: str | None, prefix: str = DEFAULT_SUBJECT_PREFIX) -> CorrelationTag | None:
    return RequestMatcher(prefix).match(subject)
