"""
registry.py - Identity Registry Client
=======================================
Read-only view of the Redis store the admin console and registration form
write to. This is the ONLY file that knows about Redis.

Keys:
  user:<digits>     JSON object for a registered resident ({"name": ...})
  door:lavanderia   current laundry access code (plain string)

Absence is an expected answer (None), not an error. Transport failures and
unreadable records raise RegistryError so the pipeline leaves the request
unseen and retries it on the next run.
"""

import json
import logging
import re
from dataclasses import dataclass, field

import redis

from config import DEFAULT_DOOR_KEY, DEFAULT_USER_KEY_PREFIX, RegistrySettings
from errors import RegistryError, RegistryUnavailable

log = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_digits(value: str | None) -> str:
    """Strip every non-digit character: '123.456.789-00' -> '12345678900'."""
    return _NON_DIGITS.sub("", value or "")


@dataclass(frozen=True)
class Identity:
    identifier: str
    display_name: str


@dataclass(frozen=True)
class AccessCode:
    """Opaque secret. repr/str never show the value so it can't leak into logs."""
    value: str = field(repr=False)

    def __str__(self) -> str:
        return "AccessCode(****)"


class IdentityRegistry:

    def __init__(self, client: redis.Redis,
                 user_key_prefix: str = DEFAULT_USER_KEY_PREFIX,
                 door_key: str = DEFAULT_DOOR_KEY):
        self.client = client
        self.user_key_prefix = user_key_prefix
        self.door_key = door_key

    @classmethod
    def from_settings(cls, settings: RegistrySettings) -> "IdentityRegistry":
        # from_url does not connect; the first command does
        client = redis.Redis.from_url(
            settings.url,
            decode_responses=True,
            socket_timeout=settings.timeout,
            socket_connect_timeout=settings.timeout,
        )
        return cls(client, user_key_prefix=settings.user_key_prefix, door_key=settings.door_key)

    def _get(self, key: str) -> str | None:
        try:
            value = self.client.get(key)
        except redis.RedisError as e:
            log.error(f"Registry read failed for {key}: {e}")
            raise RegistryUnavailable(f"Registry unavailable: {e}") from e
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        return value

    def lookup(self, identifier: str) -> Identity | None:
        digits = normalize_digits(identifier)
        if not digits:
            return None

        raw = self._get(f"{self.user_key_prefix}{digits}")
        if not raw:
            return None

        try:
            record = json.loads(raw)
        except ValueError:
            record = None
        if not isinstance(record, dict):
            log.error(f"Identity record for {digits} is not a JSON object")
            raise RegistryError(f"Malformed identity record for {digits}")

        # The registration form stores fullName; older records use name
        name = record.get("name") or record.get("fullName") or ""
        return Identity(identifier=digits, display_name=str(name).strip())

    def current_access_code(self) -> AccessCode | None:
        raw = self._get(self.door_key)
        if raw is None or not str(raw).strip():
            return None
        return AccessCode(value=str(raw).strip())

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            log.warning(f"Registry ping failed: {e}")
            return False
