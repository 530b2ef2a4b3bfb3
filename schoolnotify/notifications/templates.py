"""Template rendering for individual notifications and digests."""

from dataclasses import dataclass
from datetime import datetime
from html import escape
import re
from typing import Any, Optional, Protocol, runtime_checkable

from schoolnotify.notifications.config import NotificationType, label_for
from schoolnotify.notifications.models import DigestItem

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class RenderedContent:
    """Rendered subject and bodies, not yet addressed."""

    subject: str
    html: str
    text: str


@runtime_checkable
class TemplateRenderer(Protocol):
    """Renders a template id with a context map; None when unknown."""

    def render(self, template_id: str, context: dict[str, Any]) -> Optional[RenderedContent]:
        ...


def interpolate(template: str, context: dict[str, Any]) -> str:
    """Replace {{key}} placeholders, leaving unknown keys untouched."""

    def _sub(match: re.Match) -> str:
        value = context.get(match.group(1))
        return str(value) if value is not None else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)


_NOTICE_HTML = (
    "<p>Yth. {{recipientName}},</p>"
    "<h2>{{title}}</h2>"
    "<p>{{body}}</p>"
    "<p>{{schoolName}}</p>"
)
_NOTICE_TEXT = "Yth. {{recipientName}},\n\n{{title}}\n\n{{body}}\n\n{{schoolName}}"

DEFAULT_TEMPLATES: dict[str, dict[str, str]] = {
    "announcement-notification": {"subject": "Pengumuman: {{title}}"},
    "grade-update-notification": {"subject": "Pembaruan Nilai: {{title}}"},
    "ppdb-notification": {"subject": "PPDB: {{title}}"},
    "event-reminder": {"subject": "Pengingat Acara: {{title}}"},
    "library-notification": {"subject": "Materi Baru: {{title}}"},
    "system-notification": {"subject": "{{title}}"},
    "missing-grades-notification": {"subject": "Nilai Belum Lengkap: {{title}}"},
}


class InMemoryTemplateRenderer:
    """Template registry with {{key}} interpolation."""

    def __init__(self, templates: Optional[dict[str, dict[str, str]]] = None):
        self._templates: dict[str, dict[str, str]] = {}
        for template_id, parts in (DEFAULT_TEMPLATES if templates is None else templates).items():
            self.register(template_id, **parts)

    def register(self, template_id: str, subject: str, html: str = _NOTICE_HTML, text: str = _NOTICE_TEXT) -> None:
        self._templates[template_id] = {"subject": subject, "html": html, "text": text}

    def has_template(self, template_id: str) -> bool:
        return template_id in self._templates

    def render(self, template_id: str, context: dict[str, Any]) -> Optional[RenderedContent]:
        template = self._templates.get(template_id)
        if template is None:
            return None
        return RenderedContent(
            subject=interpolate(template["subject"], context),
            html=interpolate(template["html"], context),
            text=interpolate(template["text"], context),
        )


def group_by_type(items: list[DigestItem]) -> dict[NotificationType, list[DigestItem]]:
    """Group digest items by notification type, keeping arrival order."""
    grouped: dict[NotificationType, list[DigestItem]] = {}
    for item in items:
        grouped.setdefault(item.notification.type, []).append(item)
    return grouped


def render_digest(items: list[DigestItem], now: datetime, school_name: str) -> RenderedContent:
    """Build one composite message for a recipient's pending digest."""
    date_label = now.strftime("%d/%m/%Y")
    subject = f"Ringkasan Notifikasi - {date_label}"

    sections = []
    for notification_type, type_items in group_by_type(items).items():
        entries = "".join(
            '<div class="notification">'
            f"<p><strong>{escape(item.notification.title)}</strong></p>"
            f"<p>{escape(item.notification.body)}</p>"
            f"<small>{item.captured_at.strftime('%H:%M')}</small>"
            "</div>"
            for item in type_items
        )
        sections.append(
            f'<div class="section"><h3>{escape(label_for(notification_type))}</h3>{entries}</div>'
        )

    html = (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(subject)}</title></head><body>"
        '<div class="container">'
        f'<div class="header"><h1>Ringkasan Notifikasi</h1><p>{escape(school_name)} - {date_label}</p></div>'
        f'<div class="content">{"".join(sections)}</div>'
        '<div class="footer"><p>Email ini dikirim secara otomatis, jangan balas ke email ini.</p></div>'
        "</div></body></html>"
    )

    lines = [subject, ""]
    for notification_type, type_items in group_by_type(items).items():
        lines.append(f"[{label_for(notification_type)}]")
        lines.extend(f"- {i.notification.title}: {i.notification.body}" for i in type_items)
        lines.append("")

    return RenderedContent(subject=subject, html=html, text="\n".join(lines).rstrip() + "\n")
