"""Investor actions on a pitch: persist the new status, then notify the founder.

The status write is authoritative. The email is best effort: a failed
dispatch is logged and reported as ``notified: False`` but never undoes the
status change or fails the call.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from pitchsync.identity import AuthContext
from pitchsync.notifications import Notifier, PitchActionPayload
from pitchsync.realtime import ChangeFeed
from pitchsync.services import load_pitch

log = logging.getLogger(__name__)

PITCH_ACTIONS = ("shortlisted", "rejected", "forwarded")


class NotAuthenticatedError(Exception):
    pass


class PitchNotFoundError(LookupError):
    pass


async def submit_pitch_action(
    session: Session,
    auth: AuthContext | None,
    pitch_id: str,
    action: str,
    notes: str | None = None,
    notifier: Notifier | None = None,
    feed: ChangeFeed | None = None,
) -> dict[str, Any]:
    """Apply *action* as the pitch's new status and dispatch the founder email.

    No transition guard: a rejected pitch can be shortlisted again, and
    repeating an action is accepted.
    """
    if auth is None:
        raise NotAuthenticatedError("Not authenticated")
    if action not in PITCH_ACTIONS:
        raise ValueError(f"Invalid action '{action}' (expected one of: {', '.join(PITCH_ACTIONS)})")

    pitch = load_pitch(session, pitch_id)
    if pitch is None:
        raise PitchNotFoundError(f"Pitch {pitch_id} not found")
    owner_id = pitch.user_id
    company_name = pitch.company_name

    pitch.status = action
    try:
        session.commit()
    except Exception:
        log.exception("Failed to update status of pitch %s", pitch_id)
        raise
    if feed is not None:
        feed.publish("pitches", "UPDATE", {"id": pitch_id, "user_id": owner_id, "status": action})

    notified = False
    if notifier is None:
        log.debug("No notifier configured; skipping email for pitch %s", pitch_id)
    elif owner_id is None:
        log.warning("Pitch %s has no owner; skipping notification", pitch_id)
    else:
        payload = PitchActionPayload(
            pitch_id=pitch_id, action=action, investor_id=auth.user_id,
            founder_id=owner_id, company_name=company_name, notes=notes or None,
        )
        try:
            await notifier.pitch_action(payload)
            notified = True
        except Exception as exc:
            log.warning("Notification for pitch %s (%s) failed: %s", pitch_id, action, exc)

    return {"success": True, "pitch_id": pitch_id, "status": action, "notified": notified}
