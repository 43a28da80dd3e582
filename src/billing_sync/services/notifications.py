"""Notification recipients, templates and the outgoing email queue."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from html import escape
from typing import Any, Optional, Protocol

from sqlmodel import Session, select

from ..errors import NotificationError
from ..models import EmailQueueItem, OrganizationMember, Profile, Project


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str
    profile_id: int


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    html: str
    text: str


class RecipientResolver(Protocol):
    def __call__(self, session: Session, project_id: int) -> list[Recipient]: ...


class MessageQueue(Protocol):
    def __call__(
        self,
        session: Session,
        recipient: Recipient,
        message: RenderedMessage,
        *,
        type: str,
        metadata: dict[str, Any],
    ) -> EmailQueueItem: ...


def _display_name(profile: Profile) -> str:
    joined = " ".join(part for part in (profile.first_name, profile.last_name) if part)
    return profile.full_name or joined or "Kunde"


def project_recipients(session: Session, project_id: int) -> list[Recipient]:
    """The project's client plus every member of its organization, without duplicates."""

    project = session.get(Project, project_id)
    if project is None:
        return []
    recipients: list[Recipient] = []
    seen: set[int] = set()

    if project.client_id is not None:
        client = session.get(Profile, project.client_id)
        if client is not None and client.email:
            recipients.append(Recipient(email=client.email, name=_display_name(client), profile_id=client.id))
            seen.add(client.id)

    if project.organization_id is not None:
        members = session.exec(
            select(Profile)
            .join(OrganizationMember, OrganizationMember.profile_id == Profile.id)
            .where(OrganizationMember.organization_id == project.organization_id)
            .order_by(Profile.id)
        ).all()
        for member in members:
            if member.email and member.id not in seen:
                recipients.append(Recipient(email=member.email, name=_display_name(member), profile_id=member.id))
                seen.add(member.id)
    return recipients


def format_currency(amount: Decimal, currency: str = "EUR") -> str:
    """Format like ``1.234,56 €`` (de-DE)."""

    grouped = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    symbol = "€" if currency == "EUR" else currency
    return f"{grouped} {symbol}"


def format_date(value: date) -> str:
    return value.strftime("%d.%m.%Y")


def render_invoice_created(
    *,
    recipient_name: str,
    project_name: str,
    invoice_number: str,
    invoice_title: str,
    total_amount: str,
    due_date: Optional[str],
    dashboard_url: str,
) -> RenderedMessage:
    due_row = ""
    if due_date:
        due_row = (
            "<tr><td style=\"padding: 12px 0;\"><strong>Fällig am</strong>"
            f"<p style=\"margin: 4px 0 0;\">{escape(due_date)}</p></td></tr>"
        )
    html = f"""<!DOCTYPE html>
<html lang="de">
<head><meta charset="UTF-8"><title>Neue Rechnung</title></head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif;">
  <h2>Neue Rechnung erstellt</h2>
  <p>Projekt: {escape(project_name)}</p>
  <p>Hallo {escape(recipient_name)},</p>
  <table role="presentation" style="width: 100%; border-collapse: collapse;">
    <tr><td style="padding: 12px 0;"><strong>Rechnungsnummer</strong>
      <p style="margin: 4px 0 0;">{escape(invoice_number)}</p></td></tr>
    <tr><td style="padding: 12px 0;"><strong>Beschreibung</strong>
      <p style="margin: 4px 0 0;">{escape(invoice_title)}</p></td></tr>
    <tr><td style="padding: 12px 0;"><strong>Betrag</strong>
      <p style="margin: 4px 0 0;">{escape(total_amount)}</p></td></tr>
    {due_row}
  </table>
  <p><a href="{escape(dashboard_url, quote=True)}">Rechnung ansehen</a></p>
</body>
</html>"""

    lines = [
        "NEUE RECHNUNG",
        "=============",
        "",
        f"Projekt: {project_name}",
        "",
        f"Rechnungsnummer: {invoice_number}",
        f"Beschreibung: {invoice_title}",
        f"Betrag: {total_amount}",
    ]
    if due_date:
        lines.append(f"Fällig am: {due_date}")
    lines += ["", "---", f"Rechnung ansehen: {dashboard_url}"]
    return RenderedMessage(
        subject=f"Wiederkehrende Rechnung: {invoice_number} - {project_name}",
        html=html,
        text="\n".join(lines),
    )


def queue_email(
    session: Session,
    recipient: Recipient,
    message: RenderedMessage,
    *,
    type: str = "notification",
    metadata: Optional[dict[str, Any]] = None,
) -> EmailQueueItem:
    try:
        item = EmailQueueItem(
            recipient_email=recipient.email,
            recipient_name=recipient.name,
            subject=message.subject,
            content_html=message.html,
            content_text=message.text,
            type=type,
            metadata_json=json.dumps(metadata or {}, default=str),
        )
        session.add(item)
        session.flush()
    except Exception as exc:
        raise NotificationError(f"Could not queue email for {recipient.email}") from exc
    return item
