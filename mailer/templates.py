"""Transactional mail templates: template key -> (text body, html body), rendered with Jinja."""

from __future__ import annotations

from typing import Any

from jinja2 import Environment, StrictUndefined, Template, select_autoescape

# Context for "forgot-password": client_url, website_name, key (signed reset
# token), pin_required.
_DEFAULT_TEMPLATES: dict[str, tuple[str, str]] = {
    "forgot-password": (
        "Hello,\n\n"
        "We received a request to reset your {{ website_name }} password.\n"
        "Open the link below to choose a new one:\n\n"
        "{{ client_url }}/reset-password?token={{ key }}\n\n"
        "{% if pin_required %}You will need your PIN to complete the reset.\n\n{% endif %}"
        "If you did not ask for this, you can ignore this email.\n",
        "<p>Hello,</p>"
        "<p>We received a request to reset your {{ website_name }} password.</p>"
        '<p><a href="{{ client_url }}/reset-password?token={{ key }}">Reset your password</a></p>'
        "{% if pin_required %}<p>You will need your PIN to complete the reset.</p>{% endif %}"
        "<p>If you did not ask for this, you can ignore this email.</p>",
    ),
}


class TemplateRenderer:
    """Renders the text and html bodies for a template key."""

    def __init__(self, templates: dict[str, tuple[str, str]] | None = None) -> None:
        self._templates = templates or _DEFAULT_TEMPLATES
        text_env = Environment(autoescape=False, undefined=StrictUndefined)
        html_env = Environment(autoescape=select_autoescape(default_for_string=True), undefined=StrictUndefined)
        self._compiled: dict[str, tuple[Template, Template]] = {
            key: (text_env.from_string(text), html_env.from_string(html))
            for key, (text, html) in self._templates.items()
        }

    def render(self, template_key: str, context: dict[str, Any]) -> tuple[str, str]:
        """Return (text, html). Raises KeyError if the key is unknown."""
        if template_key not in self._compiled:
            raise KeyError(f"Unknown mail template: {template_key}")
        text_tpl, html_tpl = self._compiled[template_key]
        return text_tpl.render(**context), html_tpl.render(**context)
