"""
transport.py - Mail Relay Client
=================================
This is the ONLY file that knows about SMTP.
Everything above this layer is transport-agnostic.

Port 465 uses implicit TLS (SMTP_SSL). Any other port uses plain SMTP and
upgrades with STARTTLS when SMTP_USE_TLS=true.

send() never raises for delivery problems: it returns a TransportResult and
the pipeline decides what a failure means (always "retry next run").
Message bodies carry the access code and are never logged.
"""

import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from config import SmtpSettings

log = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


@dataclass
class TransportMessage:
    """Normalized message envelope. Transport layer speaks only this."""
    to_address: str
    subject: str
    body_text: str
    body_html: str | None
    message_id: str


@dataclass
class TransportResult:
    success: bool
    error: str | None = None


class MailRelay:

    def __init__(self, settings: SmtpSettings):
        self.settings = settings

    def _build_mime(self, msg: TransportMessage) -> MIMEMultipart:
        """Build MIME message with text and optional HTML parts."""
        from_address = self.settings.from_address
        mime = MIMEMultipart('alternative')
        mime['Subject'] = msg.subject
        mime['From'] = from_address
        mime['To'] = msg.to_address
        mime['Message-ID'] = f"<{msg.message_id}@{from_address.split('@')[-1]}>"
        mime['Auto-Submitted'] = 'auto-replied'

        mime.attach(MIMEText(msg.body_text, 'plain', 'utf-8'))
        if msg.body_html:
            mime.attach(MIMEText(msg.body_html, 'html', 'utf-8'))

        return mime

    def _connect(self) -> smtplib.SMTP:
        s = self.settings
        if s.port == IMPLICIT_TLS_PORT:
            return smtplib.SMTP_SSL(s.host, s.port, timeout=s.timeout)
        return smtplib.SMTP(s.host, s.port, timeout=s.timeout)

    def _smtp_send(self, msg: TransportMessage) -> TransportResult:
        s = self.settings
        mime = self._build_mime(msg)

        try:
            log.info(f"[{msg.message_id}] Connecting to SMTP {s.host}:{s.port}")
            with self._connect() as server:
                if s.use_starttls and s.port != IMPLICIT_TLS_PORT:
                    server.starttls()
                    log.info(f"[{msg.message_id}] STARTTLS enabled")
                if s.user and s.password:
                    server.login(s.user, s.password)

                server.sendmail(s.from_address, [msg.to_address], mime.as_string())

            log.info(f"[{msg.message_id}] Delivered: to={msg.to_address} subject='{msg.subject}'")
            return TransportResult(success=True)

        except smtplib.SMTPException as e:
            log.error(f"[{msg.message_id}] SMTP error: {e}")
            return TransportResult(success=False, error=f"SMTP error: {e}")
        except OSError as e:
            log.error(f"[{msg.message_id}] Connection failed to {s.host}:{s.port}: {e}")
            return TransportResult(success=False, error=f"Connection failed: {e}")

    def send(self, to_address: str, subject: str, body_text: str,
             body_html: str | None = None) -> TransportResult:
        """Public interface. Pipeline calls this, never _smtp_send directly."""
        msg = TransportMessage(
            to_address=to_address,
            subject=subject,
            body_text=body_text,
            body_html=body_html,
            message_id=str(uuid.uuid4()),
        )
        try:
            return self._smtp_send(msg)
        except Exception as e:
            log.error(f"Transport error for {msg.message_id}: {e}")
            return TransportResult(success=False, error=str(e))

    def summary(self) -> dict:
        """Return current SMTP config for health endpoint."""
        s = self.settings
        return {
            "host": s.host,
            "port": s.port,
            "from": s.from_address,
            "auth": bool(s.user),
            "tls": "implicit" if s.port == IMPLICIT_TLS_PORT else ("starttls" if s.use_starttls else "none"),
        }
