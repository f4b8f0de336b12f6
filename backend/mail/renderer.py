"""Rendering helpers for billing emails."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Tuple

_TEMPLATE_PATH = Path(__file__).resolve().parent / "templates"
_PLACEHOLDER_PATTERN = re.compile(r"{{\s*(\w+)\s*}}")


def _load_template(template: str) -> str:
    path = _TEMPLATE_PATH / template
    return path.read_text(encoding="utf-8")


def _render_template(template: str, context: Dict[str, Any]) -> str:
    source = _load_template(template)

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = context.get(key, "")
        return "" if value is None else str(value)

    return _PLACEHOLDER_PATTERN.sub(_replace, source)


def _render_subject_body(base_template: str, context: Dict[str, Any]) -> Tuple[str, str, str]:
    subject = _render_template(f"{base_template}_subject.txt.j2", context)
    text_body = _render_template(f"{base_template}_body.txt.j2", context)
    html_body = _render_template(f"{base_template}_body.html.j2", context)
    return subject.strip(), text_body.strip(), html_body.strip()


def render_welcome_email(context: Dict[str, Any]) -> Tuple[str, str, str]:
    """Return ``(subject, text, html)`` for the post-purchase welcome email."""
    return _render_subject_body("welcome", context)


def render_admin_notification(context: Dict[str, Any]) -> Tuple[str, str, str]:
    """Return ``(subject, text, html)`` for the new-purchase admin alert."""
    return _render_subject_body("admin_notification", context)


__all__ = ["render_admin_notification", "render_welcome_email"]
