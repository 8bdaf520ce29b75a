"""Shared fixtures: in-memory SQLite, seeded profiles and a scratch PITCHSYNC_HOME."""
from __future__ import annotations

import os
import tempfile

# Settings are cached on first use; point them at a scratch directory before
# anything imports the app.
os.environ.setdefault("PITCHSYNC_HOME", tempfile.mkdtemp(prefix="pitchsync-test-"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pitchsync.models import Account, Base, Profile


class FixedScoring:
    """Deterministic scoring provider for tests."""

    def __init__(self, value: int = 77):
        self.value = value
        self.calls = 0

    def score(self, fields) -> int:
        self.calls += 1
        return self.value

    def summarize(self, fields) -> str:
        return f"summary of {fields.company_name}"


def make_user(session, name: str | None, role: str, email: str | None = None) -> str:
    email = email or f"{(name or 'anon').lower().replace(' ', '.')}@example.com"
    account = Account(email=email, password_hash="not-a-real-hash")
    session.add(account)
    session.flush()
    session.add(Profile(id=account.id, name=name, email=email, role=role))
    session.commit()
    return account.id


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def SessionLocal(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(SessionLocal):
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def people(session):
    """One founder and two investors."""
    return {
        "founder": make_user(session, "Fiona Founder", "founder"),
        "investor": make_user(session, "Ivan Investor", "investor"),
        "investor2": make_user(session, "Iris Angel", "investor"),
    }
