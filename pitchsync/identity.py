"""Accounts, password sign-in and opaque session tokens.

The signed-in user is represented by an :class:`AuthContext` that handlers
receive explicitly (the HTTP layer resolves it from the bearer token). There
is no process-wide "current user".
"""
from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Callable

import bcrypt
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pitchsync.models import ROLES, Account, AuthSession, Profile

log = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
SIGN_OUT_SCOPES = ("local", "global")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


class AuthError(Exception):
    """Bad credentials or invalid sign-up data."""


class DuplicateEmailError(AuthError):
    pass


@dataclass
class AuthContext:
    user_id: str
    email: str
    name: str | None
    role: str

    def as_dict(self) -> dict:
        return {"id": self.user_id, "email": self.email, "name": self.name, "role": self.role}


AuthListener = Callable[[str, "AuthContext | None"], None]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise AuthError("A valid email address is required")
    return email


class IdentityService:
    """Password accounts with one profile each, plus revocable session tokens."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[AuthListener] = []

    # -- auth state listeners ------------------------------------------------

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """Call *callback(event, context)* on sign-in and sign-out. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: str, ctx: AuthContext | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, ctx)
            except Exception as exc:
                log.warning("Auth state listener failed on %s: %s", event, exc)

    # -- sessions ------------------------------------------------------------

    def _issue_token(self, session: Session, account_id: str) -> str:
        token = secrets.token_urlsafe(32)
        session.add(AuthSession(token=token, account_id=account_id))
        return token

    @staticmethod
    def _context(account: Account, profile: Profile | None) -> AuthContext:
        return AuthContext(
            user_id=account.id,
            email=account.email,
            name=profile.name if profile else None,
            role=profile.role if profile else "",
        )

    def sign_up(
        self, session: Session, email: str, password: str, display_name: str, role: str,
    ) -> tuple[str, AuthContext]:
        """Create an account and its profile, then sign it in."""
        email = _normalize_email(email)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if role not in ROLES:
            raise AuthError(f"Role must be one of: {', '.join(ROLES)}")
        if session.execute(select(Account.id).where(Account.email == email)).first():
            raise DuplicateEmailError("An account with this email already exists")

        account = Account(email=email, password_hash=hash_password(password))
        try:
            session.add(account)
            session.flush()
            profile = Profile(id=account.id, name=(display_name or "").strip() or None, email=email, role=role)
            session.add(profile)
            token = self._issue_token(session, account.id)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise DuplicateEmailError("An account with this email already exists") from None

        ctx = self._context(account, profile)
        log.info("Signed up %s as %s", email, role)
        self._emit(SIGNED_IN, ctx)
        return token, ctx

    def sign_in(self, session: Session, email: str, password: str) -> tuple[str, AuthContext]:
        email = (email or "").strip().lower()
        account = session.execute(select(Account).where(Account.email == email)).scalars().first()
        if account is None or not verify_password(password or "", account.password_hash):
            raise AuthError("Invalid email or password")
        token = self._issue_token(session, account.id)
        session.commit()

        ctx = self._context(account, session.get(Profile, account.id))
        log.info("Signed in %s", email)
        self._emit(SIGNED_IN, ctx)
        return token, ctx

    def get_session(self, session: Session, token: str | None) -> AuthContext | None:
        if not token:
            return None
        row = session.get(AuthSession, token)
        if row is None:
            return None
        account = session.get(Account, row.account_id)
        if account is None:
            return None
        return self._context(account, session.get(Profile, account.id))

    def sign_out(self, session: Session, token: str, scope: str = "local") -> int:
        """Revoke this token (``local``) or every token of its account (``global``).

        Returns the number of revoked tokens; an unknown token revokes nothing.
        """
        if scope not in SIGN_OUT_SCOPES:
            raise ValueError(f"Scope must be one of: {', '.join(SIGN_OUT_SCOPES)}")
        ctx = self.get_session(session, token)
        if ctx is None:
            return 0
        if scope == "global":
            stmt = delete(AuthSession).where(AuthSession.account_id == ctx.user_id)
        else:
            stmt = delete(AuthSession).where(AuthSession.token == token)
        revoked = session.execute(stmt).rowcount or 0
        session.commit()
        self._emit(SIGNED_OUT, ctx)
        return revoked


_default_identity = IdentityService()


def get_identity() -> IdentityService:
    return _default_identity
