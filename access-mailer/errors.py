"""
errors.py - Error Taxonomy
===========================
Exceptions shared by every layer of the access mailer.

Fatal for a whole run:
  ConfigurationError      missing/invalid settings, raised before any I/O
  MailboxConnectionError  inbox unreachable or login refused

Stage-local (one message only, never abort the batch):
  MailboxError            a single IMAP command failed (fetch/store)
  ParseError              message has no usable envelope; skipped and consumed
  RegistryError           registry read failed; message left unseen for retry

Relay failures are not exceptions: transport.send() returns a TransportResult.
"""


class AccessMailerError(Exception):
    """Base class for everything raised by this service."""


class ConfigurationError(AccessMailerError):
    pass


class MailboxConnectionError(AccessMailerError, ConnectionError):
    pass


class MailboxError(AccessMailerError):
    pass


class ParseError(AccessMailerError, ValueError):
    pass


class RegistryError(AccessMailerError):
    pass


class RegistryUnavailable(RegistryError):
    pass
