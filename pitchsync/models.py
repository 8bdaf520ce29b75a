from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from pitchsync.utils import utcnow

ROLES = ("founder", "investor")
PITCH_STATUSES = ("new", "shortlisted", "rejected", "forwarded")


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    profile: Mapped[Profile | None] = relationship("Profile", back_populates="account", uselist=False)


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id"), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # founder | investor
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    account: Mapped[Account] = relationship("Account", back_populates="profile")
    pitches: Mapped[list[Pitch]] = relationship("Pitch", back_populates="profile")


class Pitch(Base):
    __tablename__ = "pitches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)
    company_name: Mapped[str] = mapped_column(String(300), nullable=False)
    company_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    industry: Mapped[str | None] = mapped_column(String(200), nullable=True)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    funding_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    funding_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    pitch_deck_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    intro_video_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    problem_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    solution_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    traction: Mapped[str | None] = mapped_column(Text, nullable=True)
    team_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    growth_projections: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(20), default="new")  # new | shortlisted | rejected | forwarded
    ai_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime, default=utcnow)

    profile: Mapped[Profile | None] = relationship("Profile", back_populates="pitches")
    tags: Mapped[list[PitchTag]] = relationship("PitchTag", back_populates="pitch", cascade="all, delete-orphan")
    notes: Mapped[list[PitchNote]] = relationship("PitchNote", back_populates="pitch", cascade="all, delete-orphan")


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    pitch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("pitches.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    read: Mapped[bool] = mapped_column(Boolean, default=False)


class PitchTag(Base):
    __tablename__ = "pitch_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pitch_id: Mapped[str] = mapped_column(String(36), ForeignKey("pitches.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    pitch: Mapped[Pitch] = relationship("Pitch", back_populates="tags")


class PitchNote(Base):
    __tablename__ = "pitch_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pitch_id: Mapped[str] = mapped_column(String(36), ForeignKey("pitches.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    pitch: Mapped[Pitch] = relationship("Pitch", back_populates="notes")
