"""Direct messages: conversation summaries, threads, read state and unread counts.

``aggregate_conversations`` is pure; the session-backed functions around it
load rows, mutate the read flag and announce changes on the feed. Fetching a
thread never marks it read; callers fetch and then call ``mark_thread_read``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Iterable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from pitchsync.models import Message, Pitch, Profile
from pitchsync.realtime import ChangeEvent, ChangeFeed
from pitchsync.utils import isoformat

log = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"
UNKNOWN_ROLE = "Unknown"

ProfileLookup = Callable[[str], "dict[str, Any] | None"]


@dataclass
class MessageView:
    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime | None
    read: bool = False
    pitch_id: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> MessageView:
        return cls(
            id=row.id, sender_id=row.sender_id, receiver_id=row.receiver_id,
            content=row.content, created_at=row.created_at,
            read=bool(row.read), pitch_id=row.pitch_id,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id, "sender_id": self.sender_id, "receiver_id": self.receiver_id,
            "pitch_id": self.pitch_id, "content": self.content,
            "created_at": isoformat(self.created_at), "read": self.read,
        }


@dataclass
class Conversation:
    counterpart_id: str
    counterpart_name: str
    counterpart_role: str
    last_message: MessageView
    unread_count: int = 0

    @property
    def last_message_at(self) -> datetime | None:
        return self.last_message.created_at

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.counterpart_id,
            "user_name": self.counterpart_name,
            "user_role": self.counterpart_role,
            "unread_count": self.unread_count,
            "last_message": self.last_message.as_dict(),
            "last_message_date": isoformat(self.last_message_at),
        }


def _timestamp(msg: MessageView) -> datetime:
    return msg.created_at or datetime.min


def _resolve_identity(lookup_profile: ProfileLookup, user_id: str) -> tuple[str, str]:
    try:
        profile = lookup_profile(user_id)
    except Exception as exc:
        log.warning("Profile lookup failed for %s: %s", user_id, exc)
        return UNKNOWN_USER, UNKNOWN_ROLE
    if not profile:
        log.warning("No profile found for %s", user_id)
        return UNKNOWN_USER, UNKNOWN_ROLE
    return profile.get("name") or UNKNOWN_USER, profile.get("role") or UNKNOWN_ROLE


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def aggregate_conversations(
    viewer_id: str, messages: Iterable[Any], lookup_profile: ProfileLookup,
) -> list[Conversation]:
    """Group a viewer's messages into one conversation per counterpart.

    The profile lookup runs once per distinct counterpart; a failing or empty
    lookup degrades to "Unknown User"/"Unknown". The last message is the one
    with the latest ``created_at`` (ties keep the first seen), so input order
    does not matter. Newest conversation first.
    """
    by_counterpart: dict[str, Conversation] = {}
    for row in messages:
        msg = row if isinstance(row, MessageView) else MessageView.from_row(row)
        if viewer_id not in (msg.sender_id, msg.receiver_id):
            continue
        counterpart = msg.receiver_id if msg.sender_id == viewer_id else msg.sender_id
        unread = 1 if msg.receiver_id == viewer_id and not msg.read else 0

        conv = by_counterpart.get(counterpart)
        if conv is None:
            name, role = _resolve_identity(lookup_profile, counterpart)
            by_counterpart[counterpart] = Conversation(
                counterpart_id=counterpart, counterpart_name=name, counterpart_role=role,
                last_message=msg, unread_count=unread,
            )
            continue
        conv.unread_count += unread
        if _timestamp(msg) > _timestamp(conv.last_message):
            conv.last_message = msg

    return sorted(by_counterpart.values(), key=lambda c: _timestamp(c.last_message), reverse=True)


def _profile_lookup(session: Session) -> ProfileLookup:
    def lookup(user_id: str) -> dict[str, Any] | None:
        profile = session.get(Profile, user_id)
        return {"name": profile.name, "role": profile.role} if profile else None
    return lookup


def _pair_filter(a: str, b: str):
    return or_(
        and_(Message.sender_id == a, Message.receiver_id == b),
        and_(Message.sender_id == b, Message.receiver_id == a),
    )


# ---------------------------------------------------------------------------
# Session-backed operations
# ---------------------------------------------------------------------------


def get_user_conversations(session: Session, viewer_id: str) -> list[dict]:
    rows = session.execute(
        select(Message)
        .where(or_(Message.sender_id == viewer_id, Message.receiver_id == viewer_id))
        .order_by(Message.created_at.desc())
    ).scalars().all()
    return [c.as_dict() for c in aggregate_conversations(viewer_id, rows, _profile_lookup(session))]


def get_thread(session: Session, viewer_id: str, other_id: str) -> list[dict]:
    """Messages between two users, oldest first, with sender name and role."""
    rows = session.execute(
        select(Message).where(_pair_filter(viewer_id, other_id)).order_by(Message.created_at)
    ).scalars().all()
    lookup = _profile_lookup(session)
    senders: dict[str, tuple[str, str]] = {}
    thread = []
    for row in rows:
        if row.sender_id not in senders:
            senders[row.sender_id] = _resolve_identity(lookup, row.sender_id)
        name, role = senders[row.sender_id]
        thread.append({**MessageView.from_row(row).as_dict(), "sender_name": name, "sender_role": role})
    return thread


def mark_thread_read(
    session: Session, viewer_id: str, other_id: str, feed: ChangeFeed | None = None,
) -> int:
    """Mark every unread message from *other_id* to the viewer as read.

    Returns how many rows changed; a second call changes nothing.
    """
    ids = list(session.execute(
        select(Message.id).where(
            Message.sender_id == other_id,
            Message.receiver_id == viewer_id,
            Message.read.is_(False),
        )
    ).scalars())
    if not ids:
        return 0
    session.execute(update(Message).where(Message.id.in_(ids)).values(read=True))
    session.commit()
    if feed is not None:
        for mid in ids:
            feed.publish("messages", "UPDATE", {
                "id": mid, "sender_id": other_id, "receiver_id": viewer_id, "read": True,
            })
    return len(ids)


def send_message(
    session: Session, sender_id: str, receiver_id: str, content: str,
    pitch_id: str | None = None, feed: ChangeFeed | None = None,
) -> dict | None:
    """Store a message. Returns ``None`` when the receiver has no profile.

    A ``pitch_id`` that names no pitch is rejected with ``ValueError``.
    """
    content = (content or "").strip()
    if not content:
        raise ValueError("Message content is required")
    if sender_id == receiver_id:
        raise ValueError("Cannot send a message to yourself")
    if session.get(Profile, receiver_id) is None:
        return None
    if pitch_id is not None and session.get(Pitch, pitch_id) is None:
        raise ValueError(f"Pitch {pitch_id} not found")
    msg = Message(sender_id=sender_id, receiver_id=receiver_id, content=content, pitch_id=pitch_id)
    session.add(msg)
    try:
        session.commit()
    except Exception:
        log.exception("Failed to store message from %s to %s", sender_id, receiver_id)
        raise
    view = MessageView.from_row(msg).as_dict()
    if feed is not None:
        feed.publish("messages", "INSERT", view)
    return view


def count_unread(session: Session, viewer_id: str) -> int:
    return session.execute(
        select(func.count()).select_from(Message)
        .where(Message.receiver_id == viewer_id, Message.read.is_(False))
    ).scalar_one()


async def unread_count_stream(
    feed: ChangeFeed, viewer_id: str, session_factory: Callable[[], Session],
) -> AsyncIterator[int]:
    """Yield the unread count now and again after every change addressed to the viewer.

    Each event triggers a fresh count query; event payloads are not used.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
    unsubscribe = feed.subscribe(
        "messages", ("INSERT", "UPDATE"),
        lambda change: loop.call_soon_threadsafe(queue.put_nowait, change),
        match={"receiver_id": viewer_id},
    )

    def recount() -> int:
        with session_factory() as session:
            return count_unread(session, viewer_id)

    try:
        yield recount()
        while True:
            await queue.get()
            yield recount()
    finally:
        unsubscribe()
