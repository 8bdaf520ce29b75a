"""Transactional email for pitch status changes and new messages.

Emails go out through the Resend HTTP API. Every failure (missing key,
unknown profile, provider error) raises :class:`NotificationError`; callers
decide whether that is fatal. For pitch actions and message sends it is not.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from sqlalchemy.orm import Session

from pitchsync.config import Settings, get_settings
from pitchsync.models import Account, Profile

log = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


class NotificationError(Exception):
    pass


@dataclass
class PitchActionPayload:
    pitch_id: str
    action: str
    investor_id: str
    founder_id: str
    company_name: str
    notes: str | None = None


@dataclass
class MessagePayload:
    message_id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: str | None = None


@dataclass
class ActionTemplate:
    subject: str
    title: str
    message: str
    color: str


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def action_template(action: str, company_name: str, investor_name: str) -> ActionTemplate:
    if action == "shortlisted":
        return ActionTemplate(
            subject=f"Great news! Your pitch for {company_name} has been shortlisted",
            title="Your pitch has been shortlisted!",
            message=(f"{investor_name} has shortlisted your pitch for {company_name}. "
                     "This means they're interested in learning more about your company."),
            color="#22c55e",
        )
    if action == "rejected":
        return ActionTemplate(
            subject=f"Update on your pitch for {company_name}",
            title="Pitch Status Update",
            message=(f"{investor_name} has reviewed your pitch for {company_name}. "
                     "While this particular opportunity didn't move forward, keep refining your "
                     "pitch and continue reaching out to other investors."),
            color="#ef4444",
        )
    if action == "forwarded":
        return ActionTemplate(
            subject=f"Your pitch for {company_name} has been forwarded",
            title="Your pitch has been forwarded!",
            message=(f"{investor_name} has forwarded your pitch for {company_name} to other "
                     "investors in their network. This could lead to additional opportunities."),
            color="#3b82f6",
        )
    raise NotificationError(f"No email template for action '{action}'")


_FOOTER = (
    '<p style="color: #666; font-size: 12px;">'
    "This is an automated message from PitchSync. Please do not reply to this email.</p>"
)


def _button(url: str, label: str, color: str) -> str:
    return (
        '<div style="text-align: center; margin: 30px 0;">'
        f'<a href="{html.escape(url)}" style="background-color: {color}; color: white; '
        'padding: 12px 24px; text-decoration: none; border-radius: 4px; display: inline-block;">'
        f"{label}</a></div>"
    )


def render_pitch_action_email(
    payload: PitchActionPayload, investor_name: str, app_url: str,
) -> tuple[str, str]:
    """Subject and HTML body for a status change email."""
    tpl = action_template(payload.action, payload.company_name, investor_name)
    pitch_url = f"{app_url.rstrip('/')}/pitch/{payload.pitch_id}"
    notes_block = ""
    if payload.notes:
        notes_block = (
            '<div style="margin-top: 20px;"><p><strong>Additional Notes:</strong></p>'
            '<p style="background-color: white; padding: 15px; border-radius: 4px; '
            f'border-left: 4px solid {tpl.color};">{html.escape(payload.notes)}</p></div>'
        )
    body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: {tpl.color};">{html.escape(tpl.title)}</h2>'
        '<div style="background-color: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">'
        f"<p><strong>Company:</strong> {html.escape(payload.company_name)}</p>"
        f"<p><strong>Investor:</strong> {html.escape(investor_name)}</p>"
        f'<p style="margin-top: 15px;">{html.escape(tpl.message)}</p>'
        f"{notes_block}</div>"
        f"{_button(pitch_url, 'View Your Pitch', tpl.color)}"
        f"{_FOOTER}</div>"
    )
    return tpl.subject, body


def message_preview(content: str) -> str:
    return content[:PREVIEW_LENGTH] + "..." if len(content) > PREVIEW_LENGTH else content


def render_message_email(
    sender_name: str, sender_role: str, content: str, app_url: str,
) -> tuple[str, str]:
    messages_url = f"{app_url.rstrip('/')}/messages"
    body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h2 style="color: #333;">You have a new message!</h2>'
        '<div style="background-color: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">'
        f"<p><strong>From:</strong> {html.escape(sender_name)} ({html.escape(sender_role)})</p>"
        "<p><strong>Message:</strong></p>"
        '<p style="background-color: white; padding: 15px; border-radius: 4px; '
        f'border-left: 4px solid #007bff;">{html.escape(message_preview(content))}</p></div>'
        f"{_button(messages_url, 'View Conversation', '#007bff')}"
        f"{_FOOTER}</div>"
    )
    return f"New message from {sender_name}", body


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class EmailSender:
    """Minimal async client for the Resend ``POST /emails`` endpoint."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> EmailSender:
        settings = settings or get_settings()
        return cls(
            api_key=settings.resend_api_key,
            from_address=settings.email_from,
            api_url=settings.email_api_url,
            timeout=settings.request_timeout_seconds,
        )

    async def send(self, to: str, subject: str, html_body: str) -> dict[str, Any]:
        if not self.api_key:
            raise NotificationError("RESEND_API_KEY is not configured")
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout), transport=self._transport,
            ) as client:
                resp = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.from_address, "to": [to], "subject": subject, "html": html_body},
                )
        except httpx.HTTPError as exc:
            raise NotificationError(f"Email request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise NotificationError(f"Email provider returned {resp.status_code}: {resp.text[:200]}")
        return resp.json() if resp.content else {}


class Notifier:
    """Resolves recipients from the store, renders a template and sends it."""

    def __init__(
        self,
        sender: EmailSender,
        session_factory: Callable[[], Session],
        app_url: str = "http://localhost:8080",
    ):
        self.sender = sender
        self.session_factory = session_factory
        self.app_url = app_url

    def _lookup(self, profile_id: str, label: str) -> tuple[Profile, str | None]:
        with self.session_factory() as session:
            profile = session.get(Profile, profile_id)
            account = session.get(Account, profile_id)
            if profile is None:
                raise NotificationError(f"Failed to fetch {label} profile")
            return profile, account.email if account else None

    async def pitch_action(self, payload: PitchActionPayload) -> dict[str, Any]:
        investor, _ = self._lookup(payload.investor_id, "investor")
        _, founder_email = self._lookup(payload.founder_id, "founder")
        if not founder_email:
            raise NotificationError("Failed to fetch founder email")
        subject, body = render_pitch_action_email(payload, investor.name or "An investor", self.app_url)
        result = await self.sender.send(founder_email, subject, body)
        log.info("Pitch action email (%s) sent for pitch %s", payload.action, payload.pitch_id)
        return result

    async def new_message(self, payload: MessagePayload) -> dict[str, Any]:
        sender, _ = self._lookup(payload.sender_id, "sender")
        _, receiver_email = self._lookup(payload.receiver_id, "receiver")
        if not receiver_email:
            raise NotificationError("Failed to fetch receiver email")
        subject, body = render_message_email(
            sender.name or "Unknown User", sender.role or "Unknown", payload.content, self.app_url,
        )
        result = await self.sender.send(receiver_email, subject, body)
        log.info("Message email sent for message %s", payload.message_id)
        return result
