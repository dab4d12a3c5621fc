"""Template rendering for member emails.

Each email is a set of three templates named ``<name>_subject.txt.j2``,
``<name>_body.txt.j2`` and ``<name>_body.html.j2`` using ``{{ key }}``
placeholders. Values are HTML-escaped in the HTML body unless the key ends
with ``_html``, which marks a fragment that is already markup.
"""
from __future__ import annotations

import re
from functools import lru_cache
from html import escape
from pathlib import Path
from typing import Any, Mapping

from .providers import OutboundEmail

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER = re.compile(r"{{\s*(\w+)\s*}}")


@lru_cache(maxsize=None)
def _template_source(filename: str) -> str:
    return (TEMPLATE_DIR / filename).read_text(encoding="utf-8")


def _fill(filename: str, context: Mapping[str, Any], *, html: bool) -> str:
    def substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        value = context.get(key)
        text = "" if value is None else str(value)
        if html and not key.endswith("_html"):
            return escape(text)
        return text

    return _PLACEHOLDER.sub(substitute, _template_source(filename)).strip()


def render_email(name: str, recipient: str, context: Mapping[str, Any]) -> OutboundEmail:
    return OutboundEmail(
        recipient=recipient,
        subject=_fill(f"{name}_subject.txt.j2", context, html=False),
        text_body=_fill(f"{name}_body.txt.j2", context, html=False),
        html_body=_fill(f"{name}_body.html.j2", context, html=True),
    )


def render_welcome_email(recipient: str, context: Mapping[str, Any]) -> OutboundEmail:
    return render_email("welcome", recipient, context)


__all__ = ["TEMPLATE_DIR", "render_email", "render_welcome_email"]
