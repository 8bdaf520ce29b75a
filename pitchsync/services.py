"""Shared business logic for the PitchSync API and MCP server."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from pitchsync.models import PITCH_STATUSES, ROLES, Pitch, PitchNote, PitchTag, Profile
from pitchsync.normalizer import (
    answers_to_columns,
    default_scoring,
    normalize_pitch,
    parse_funding_amount,
    scoring_input,
)
from pitchsync.realtime import ChangeFeed
from pitchsync.scoring import ScoringProvider
from pitchsync.utils import isoformat

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Reference lists shown in filters and forms
# ---------------------------------------------------------------------------

COMMON_TAGS = (
    "AI", "Climate", "Fintech", "Health", "EdTech",
    "B2B", "B2C", "SaaS", "Hardware", "Marketplace",
)

FUNDING_STAGES = ("Pre-seed", "Seed", "Series A", "Series B", "Series C+", "Growth")

REGIONS = (
    "North America", "Europe", "Asia", "Africa",
    "South America", "Oceania", "Global",
)

INDUSTRIES = (
    "AI/ML", "Climate Tech", "Fintech", "Health Tech", "EdTech",
    "Enterprise SaaS", "Consumer", "Hardware", "Marketplace", "Web3/Crypto",
)


def reference_lists() -> dict[str, list[str]]:
    return {
        "tags": list(COMMON_TAGS),
        "funding_stages": list(FUNDING_STAGES),
        "regions": list(REGIONS),
        "industries": list(INDUSTRIES),
        "statuses": list(PITCH_STATUSES),
    }

SUBMISSION_TEXT_FIELDS = ("industry", "location", "funding_stage", "pitch_deck_url")


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def profile_view(profile: Profile) -> dict:
    return {
        "id": profile.id, "name": profile.name, "email": profile.email, "role": profile.role,
        "created_at": isoformat(profile.created_at), "updated_at": isoformat(profile.updated_at),
    }


def tag_view(tag: PitchTag) -> dict:
    return {"id": tag.id, "pitch_id": tag.pitch_id, "name": tag.name, "created_at": isoformat(tag.created_at)}


def note_view(note: PitchNote) -> dict:
    return {
        "id": note.id, "pitch_id": note.pitch_id, "content": note.content,
        "created_at": isoformat(note.created_at), "updated_at": isoformat(note.updated_at),
    }


def _pitch_change(pitch: Pitch) -> dict[str, Any]:
    return {"id": pitch.id, "user_id": pitch.user_id, "status": pitch.status}


def _check_status(status: str) -> None:
    if status not in PITCH_STATUSES:
        raise ValueError(f"Invalid status '{status}' (expected one of: {', '.join(PITCH_STATUSES)})")


# ---------------------------------------------------------------------------
# Pitches
# ---------------------------------------------------------------------------


def _pitch_query():
    return select(Pitch).options(selectinload(Pitch.profile))


def load_pitch(session: Session, pitch_id: str) -> Pitch | None:
    return session.execute(_pitch_query().where(Pitch.id == pitch_id)).scalars().first()


def create_pitch(
    session: Session,
    owner_id: str,
    submission: Mapping[str, Any],
    scoring: ScoringProvider | None = None,
    feed: ChangeFeed | None = None,
) -> dict:
    """Persist a founder submission and return its normalized view.

    The funding amount is parsed from its display form, answers are stored
    positionally and a placeholder score is persisted.
    """
    company_name = (submission.get("company_name") or "").strip()
    if not company_name:
        raise ValueError("Company name is required")

    pitch = Pitch(
        user_id=owner_id,
        company_name=company_name,
        company_description=submission.get("description") or "",
        funding_amount=parse_funding_amount(submission.get("funding_amount")),
        intro_video_url=submission.get("video_url") or None,
        status="new",
        **{f: submission.get(f) or None for f in SUBMISSION_TEXT_FIELDS},
        **answers_to_columns(submission.get("answers") or []),
    )
    pitch.ai_score = (scoring or default_scoring).score(scoring_input(pitch))

    session.add(pitch)
    session.commit()
    pitch = load_pitch(session, pitch.id)
    log.info("Pitch %s created for %s", pitch.id, owner_id)
    if feed is not None:
        feed.publish("pitches", "INSERT", _pitch_change(pitch))
    return normalize_pitch(pitch, scoring)


def list_pitches(
    session: Session, *, status: str | None = None, industry: str | None = None,
    funding_stage: str | None = None, search: str | None = None,
    scoring: ScoringProvider | None = None,
) -> list[dict]:
    """All pitches with their owner profile, newest first."""
    query = _pitch_query()
    if status:
        statuses = [s.strip().lower() for s in status.split(",") if s.strip()]
        query = query.where(Pitch.status.in_(statuses))
    if industry:
        query = query.where(Pitch.industry == industry)
    if funding_stage:
        query = query.where(Pitch.funding_stage == funding_stage)
    if search:
        like = f"%{search.strip()}%"
        query = query.where(or_(
            Pitch.company_name.ilike(like),
            Pitch.company_description.ilike(like),
            Pitch.industry.ilike(like),
        ))
    rows = session.execute(query.order_by(Pitch.created_at.desc())).scalars().all()
    return [normalize_pitch(p, scoring) for p in rows]


def founder_pitches(session: Session, owner_id: str, scoring: ScoringProvider | None = None) -> list[dict]:
    rows = session.execute(
        _pitch_query().where(Pitch.user_id == owner_id).order_by(Pitch.created_at.desc())
    ).scalars().all()
    return [normalize_pitch(p, scoring) for p in rows]


def get_pitch(session: Session, pitch_id: str, scoring: ScoringProvider | None = None) -> dict | None:
    pitch = load_pitch(session, pitch_id)
    return normalize_pitch(pitch, scoring) if pitch else None


def update_pitch_status(
    session: Session, pitch_id: str, status: str, feed: ChangeFeed | None = None,
) -> dict | None:
    """Overwrite a pitch's status. Any status may follow any other; last write wins."""
    _check_status(status)
    pitch = load_pitch(session, pitch_id)
    if pitch is None:
        return None
    pitch.status = status
    session.commit()
    if feed is not None:
        feed.publish("pitches", "UPDATE", _pitch_change(pitch))
    return normalize_pitch(pitch)


def bulk_update_status(
    session: Session, pitch_ids: Iterable[str], status: str, feed: ChangeFeed | None = None,
) -> int:
    """Set the same status on several pitches; unknown ids are ignored."""
    _check_status(status)
    ids = list(dict.fromkeys(pitch_ids))
    if not ids:
        return 0
    found = session.execute(
        select(Pitch.id, Pitch.user_id).where(Pitch.id.in_(ids))
    ).all()
    if found:
        session.execute(
            update(Pitch).where(Pitch.id.in_([pid for pid, _ in found])).values(status=status)
        )
    session.commit()
    if feed is not None:
        for pid, owner in found:
            feed.publish("pitches", "UPDATE", {"id": pid, "user_id": owner, "status": status})
    return len(found)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def get_profile(session: Session, profile_id: str) -> dict | None:
    profile = session.get(Profile, profile_id)
    return profile_view(profile) if profile else None


def list_profiles(session: Session, role: str | None = None) -> list[dict]:
    query = select(Profile)
    if role:
        if role not in ROLES:
            raise ValueError(f"Invalid role '{role}'")
        query = query.where(Profile.role == role)
    rows = session.execute(query.order_by(Profile.name)).scalars().all()
    return [profile_view(p) for p in rows]


def search_profiles(profiles: list[dict], term: str | None) -> list[dict]:
    """Case-insensitive substring match on the display name."""
    q = (term or "").strip().lower()
    if not q:
        return profiles
    return [p for p in profiles if q in (p.get("name") or "").lower()]


# ---------------------------------------------------------------------------
# Tags and notes (per investor, per pitch)
# ---------------------------------------------------------------------------


def _pitch_exists(session: Session, pitch_id: str) -> bool:
    return session.execute(select(Pitch.id).where(Pitch.id == pitch_id)).first() is not None


def list_tags(session: Session, pitch_id: str, user_id: str) -> list[dict]:
    tags = session.execute(
        select(PitchTag).where(PitchTag.pitch_id == pitch_id, PitchTag.user_id == user_id)
        .order_by(PitchTag.id)
    ).scalars().all()
    return [tag_view(t) for t in tags]


def add_tag(session: Session, pitch_id: str, user_id: str, name: str) -> dict | None:
    """Attach a tag; adding an existing tag name returns the existing one."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Tag name is required")
    if not _pitch_exists(session, pitch_id):
        return None
    existing = session.execute(
        select(PitchTag).where(
            PitchTag.pitch_id == pitch_id, PitchTag.user_id == user_id, PitchTag.name == name,
        )
    ).scalars().first()
    if existing:
        return tag_view(existing)
    tag = PitchTag(pitch_id=pitch_id, user_id=user_id, name=name)
    session.add(tag)
    session.commit()
    return tag_view(tag)


def remove_tag(session: Session, tag_id: int, user_id: str) -> bool:
    tag = session.execute(
        select(PitchTag).where(PitchTag.id == tag_id, PitchTag.user_id == user_id)
    ).scalars().first()
    if tag is None:
        return False
    session.delete(tag)
    session.commit()
    return True


def list_notes(session: Session, pitch_id: str, user_id: str) -> list[dict]:
    notes = session.execute(
        select(PitchNote).where(PitchNote.pitch_id == pitch_id, PitchNote.user_id == user_id)
        .order_by(PitchNote.created_at.desc(), PitchNote.id.desc())
    ).scalars().all()
    return [note_view(n) for n in notes]


def add_note(session: Session, pitch_id: str, user_id: str, content: str) -> dict | None:
    content = (content or "").strip()
    if not content:
        raise ValueError("Note content is required")
    if not _pitch_exists(session, pitch_id):
        return None
    note = PitchNote(pitch_id=pitch_id, user_id=user_id, content=content)
    session.add(note)
    session.commit()
    return note_view(note)
