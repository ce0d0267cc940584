"""
Laundry Access Mailer
=====================
Language  : Python
Framework : Flask + Gunicorn

Residents email the building inbox with subject "REQ-CODE:<CPF>" and get the
current laundry access code back (or a rejection if they never registered).

Layers:
  config.py          - environment settings, fail-fast validation
  inbox.py           - IMAP mailbox session
  message_parser.py  - raw message -> sender/subject/body
  matcher.py         - subject -> correlation tag (CPF digits)
  registry.py        - Redis identity/access-code reads
  templates.py       - reply registry and renderers
  transport.py       - SMTP relay
  pipeline.py        - per-message state machine and batch run

Triggers:
  POST /check-email (or GET /check-email?run=true) from a scheduler
  flask --app main check-email                      from cron

Serving:
  gunicorn --chdir access-mailer --bind 0.0.0.0:3000 main:app
"""

import os
import logging

import click
from flask import Flask, request, jsonify

import config
import pipeline
import templates
from errors import ConfigurationError, MailboxConnectionError, MailboxError
from inbox import MailboxSession
from matcher import RequestMatcher
from registry import IdentityRegistry
from transport import MailRelay

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [access-mailer] %(levelname)s %(message)s'
)
log = logging.getLogger(__name__)

app = Flask(__name__)


def load_settings() -> config.Settings:
    return config.load_settings()


def build_clients(settings: config.Settings):
    """Fresh clients per run: (session, registry, relay, matcher)."""
    return (
        MailboxSession(settings.imap),
        IdentityRegistry.from_settings(settings.registry),
        MailRelay(settings.smtp),
        RequestMatcher(settings.subject_prefix),
    )


def run_check(settings: config.Settings, window_hours: float | None = None) -> pipeline.RunReport:
    """Raises ValueError for an out-of-range window before any client is built."""
    since = settings.search_window
    if window_hours is not None:
        since = config.window_from_hours(window_hours)
    session, registry, relay, matcher = build_clients(settings)
    return pipeline.run(session, registry, relay, matcher, since=since, workers=settings.workers)


@app.route('/health')
def health():
    try:
        settings = load_settings()
    except ConfigurationError as e:
        return jsonify({
            "status": "misconfigured",
            "service": "access-mailer",
            "error": str(e),
        }), 500

    reachable = IdentityRegistry.from_settings(settings.registry).ping()
    return jsonify({
        "status": "healthy" if reachable else "degraded",
        "service": "access-mailer",
        "config": config.summary(settings),
        "transport": MailRelay(settings.smtp).summary(),
        "registry": "reachable" if reachable else "unreachable",
    }), 200 if reachable else 503


@app.route('/check-email', methods=['GET', 'POST'])
def check_email():
    if request.method != 'POST' and request.args.get('run') != 'true':
        return jsonify({"ok": False, "error": "Call this endpoint with POST or ?run=true"}), 400

    window_hours = None
    raw_window = request.args.get('window_hours')
    if raw_window:
        try:
            window_hours = float(raw_window)
            config.window_from_hours(window_hours)
        except ValueError as e:
            return jsonify({"ok": False, "error": f"Invalid window_hours {raw_window!r}: {e}"}), 400

    try:
        settings = load_settings()
    except ConfigurationError as e:
        log.error(f"Configuration error: {e}")
        return jsonify({"ok": False, "error": str(e)}), 500

    try:
        report = run_check(settings, window_hours)
    except (MailboxConnectionError, MailboxError) as e:
        log.error(f"Mailbox error: {e}")
        return jsonify({"ok": False, "error": str(e)}), 502

    message = "No new mail to process." if report.found == 0 else "Processing finished."
    return jsonify({"ok": True, "message": message, "report": report.as_dict()})


@app.route('/send-code', methods=['GET', 'POST'])
def send_code():
    if request.method != 'POST':
        return jsonify({"ok": False, "error": "Method not allowed"}), 405

    data = request.get_json(silent=True) or {}
    payload = {
        "subject": data.get('subject'),
        "body": data.get('body'),
    }
    to_address = data.get('to')
    errors = templates.validate("plain", payload)
    if not to_address:
        errors.insert(0, "Missing required payload field: 'to'")
    if errors:
        return jsonify({"ok": False, "error": "; ".join(errors)}), 400

    try:
        settings = load_settings()
    except ConfigurationError as e:
        return jsonify({"ok": False, "error": str(e)}), 500

    subject, body_text, body_html = templates.render("plain", payload)
    result = MailRelay(settings.smtp).send(to_address, subject, body_text, body_html)
    if not result.success:
        return jsonify({"ok": False, "error": result.error}), 500
    return jsonify({"ok": True, "message": "Sent"})


@app.route('/reply-types', methods=['GET'])
def reply_type_list():
    return jsonify({
        name: {
            "required_fields": spec.required_fields,
            "description": spec.description,
        }
        for name, spec in templates.REPLY_TYPES.items()
    })


@app.cli.command('check-email')
@click.option('--window-hours', type=float, default=None,
              help='Only consider mail newer than this many hours (0 disables the window).')
def check_email_command(window_hours):
    """Process unseen access-code requests once."""
    if window_hours is not None:
        try:
            config.window_from_hours(window_hours)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--window-hours")
    try:
        report = run_check(load_settings(), window_hours)
    except (ConfigurationError, MailboxConnectionError, MailboxError) as e:
        log.error(f"Run aborted: {e}")
        raise SystemExit(1)
    click.echo(f"found={report.found} consumed={report.consumed} pending={report.pending} "
               f"counts={report.counts()}")


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 3000))
    log.info(f"Access Mailer (Python) starting on :{port}")
    app.run(host='0.0.0.0', port=port)
