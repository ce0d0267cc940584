"""
templates.py - Reply Registry
==============================
Defines the replies a requester can receive, their required payload fields,
and renders them to subject/body strings.

render() returns (subject, body_text, body_html).
Subjects are fixed literals per reply type; residents filter on them.
Plain text is always provided; HTML repeats the same content in a minimal
wrapper, with every interpolated value escaped.

Adding a new reply type: add entry to REPLY_TYPES and a render function.
"""

from dataclasses import dataclass
from html import escape

SUCCESS_SUBJECT = "CÓDIGO DE ACESSO - Lavanderia"
REJECTION_SUBJECT = "Pedido não autorizado - código não encontrado"
SIGNATURE = "Administração do Condomínio"


@dataclass
class ReplyTypeSpec:
    required_fields: list[str]
    description: str


# ── Registry ──────────────────────────────────────────────────────────────────

REPLY_TYPES: dict[str, ReplyTypeSpec] = {
    "access_code": ReplyTypeSpec(
        required_fields=["display_name", "access_code"],
        description="Current laundry access code for a registered resident",
    ),
    "not_registered": ReplyTypeSpec(
        required_fields=["identifier"],
        description="Rejection: no registration exists for the requested CPF",
    ),
    "plain": ReplyTypeSpec(
        required_fields=["subject", "body"],
        description="Free-form message sent through the relay endpoint",
    ),
}


# ── Validation ────────────────────────────────────────────────────────────────

def validate(reply_type: str, payload: dict) -> list[str]:
    """Returns list of validation errors. Empty list = valid."""
    spec = REPLY_TYPES.get(reply_type)
    if not spec:
        return [f"Unknown reply type: {reply_type}"]
    return [
        f"Missing required payload field: '{field}'"
        for field in spec.required_fields
        if payload.get(field) in (None, "")
    ]


# ── Renderers ─────────────────────────────────────────────────────────────────

def render(reply_type: str, payload: dict) -> tuple[str, str, str]:
    """
    Returns (subject, body_text, body_html).
    Raises KeyError if reply_type not in registry (validate first).
    """
    renderers = {
        "access_code":    _render_access_code,
        "not_registered": _render_not_registered,
        "plain":          _render_plain,
    }
    return renderers[reply_type](payload)


def render_success(display_name: str, access_code: str) -> tuple[str, str, str]:
    return render("access_code", {"display_name": display_name, "access_code": access_code})


def render_rejection(identifier: str) -> tuple[str, str, str]:
    return render("not_registered", {"identifier": identifier})


def _html_wrap(title: str, body_text: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{escape(title)}</title>
</head>
<body style="margin:0;padding:24px;font-family:system-ui,sans-serif;">
  <pre style="font-family:inherit;white-space:pre-wrap;">{escape(body_text)}</pre>
</body>
</html>"""


# ── Individual renderers ──────────────────────────────────────────────────────

def _render_access_code(p: dict) -> tuple[str, str, str]:
    name = str(p['display_name']).strip()
    text = "\n".join([
        f"Olá {name}," if name else "Olá,",
        "",
        "Recebemos sua solicitação.",
        "Segue o código de acesso:",
        "",
        str(p['access_code']),
        "",
        "Atenciosamente,",
        SIGNATURE,
    ])
    return SUCCESS_SUBJECT, text, _html_wrap(SUCCESS_SUBJECT, text)


def _render_not_registered(p: dict) -> tuple[str, str, str]:
    text = "\n".join([
        f"Não encontramos cadastro para o CPF informado ({p['identifier']}).",
        "",
        "Se você mora no condomínio, faça seu cadastro e envie o pedido novamente.",
        "",
        "Atenciosamente,",
        SIGNATURE,
    ])
    return REJECTION_SUBJECT, text, _html_wrap(REJECTION_SUBJECT, text)


def _render_plain(p: dict) -> tuple[str, str, str]:
    subject = str(p['subject'])
    body = str(p['body'])
    return subject, body, _html_wrap(subject, body)
