from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from pitchsync import analytics as analytics_service
from pitchsync import messaging, services
from pitchsync.actions import NotAuthenticatedError, PitchNotFoundError, submit_pitch_action
from pitchsync.config import get_settings
from pitchsync.db import get_session, init_db
from pitchsync.identity import AuthContext, AuthError, DuplicateEmailError, IdentityService, get_identity
from pitchsync.notifications import EmailSender, MessagePayload, Notifier
from pitchsync.realtime import ChangeFeed, get_feed
from pitchsync.schemas import (
    AnalyticsOut,
    BulkStatusResult,
    BulkStatusUpdate,
    ConversationOut,
    MarkReadResult,
    MessageCreate,
    MessageOut,
    NoteCreate,
    NoteOut,
    PitchActionRequest,
    PitchActionResult,
    PitchOut,
    PitchSubmission,
    PortfolioOut,
    ProfileOut,
    ReferenceOut,
    SessionOut,
    SignInRequest,
    SignUpRequest,
    StatusUpdate,
    TagCreate,
    TagOut,
    ThreadMessageOut,
    UnreadCountOut,
    UploadOut,
    UserOut,
)
from pitchsync.storage import (
    PITCH_DECK_MAX_BYTES,
    PITCH_VIDEO_MAX_BYTES,
    LocalBlobStore,
    UploadValidationError,
    upload_pitch_deck,
    upload_pitch_video,
)

log = logging.getLogger(__name__)

REALTIME_TABLES = ("messages", "pitches")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    get_settings().storage_dir.mkdir(parents=True, exist_ok=True)
    yield


app = FastAPI(
    title="PitchSync",
    version="0.1.0",
    description=(
        "Founders submit pitches, investors review, shortlist and forward them, "
        "and both sides exchange messages. All endpoints return JSON and require "
        "a bearer token except sign-up and sign-in."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Accounts, sign-in and session tokens."},
        {"name": "Profiles", "description": "Public identities of founders and investors."},
        {"name": "Pitches", "description": "Submit, browse and review pitches."},
        {"name": "Review", "description": "Investor tags and private notes on pitches."},
        {"name": "Uploads", "description": "Pitch deck and intro video uploads."},
        {"name": "Messages", "description": "Conversations, threads and unread counts."},
        {"name": "Realtime", "description": "Server-sent change notifications."},
        {"name": "Insights", "description": "Portfolio summary and pitch-flow analytics."},
    ],
)

app.mount("/files", StaticFiles(directory=get_settings().storage_dir, check_dir=False), name="files")


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------

bearer = HTTPBearer(auto_error=False)


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def change_feed() -> ChangeFeed:
    return get_feed()


def identity_service() -> IdentityService:
    return get_identity()


def blob_store() -> LocalBlobStore:
    settings = get_settings()
    return LocalBlobStore(settings.storage_dir, settings.public_files_url)


def notifier() -> Notifier:
    settings = get_settings()
    return Notifier(EmailSender.from_settings(settings), get_session, settings.app_url)


def bearer_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(401, "Not authenticated")
    return credentials.credentials


def current_user(
    token: str = Depends(bearer_token),
    session: Session = Depends(db_session),
    identity: IdentityService = Depends(identity_service),
) -> AuthContext:
    auth = identity.get_session(session, token)
    if auth is None:
        raise HTTPException(401, "Invalid or expired session")
    return auth


def require_role(role: str):
    def dependency(auth: AuthContext = Depends(current_user)) -> AuthContext:
        if auth.role != role:
            raise HTTPException(403, f"Only {role}s can do this")
        return auth
    return dependency


founder_user = require_role("founder")
investor_user = require_role("investor")


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


# ---------------------------------------------------------------------------
# Routes: Auth
# ---------------------------------------------------------------------------


def _session_out(token: str, auth: AuthContext) -> dict:
    return {"access_token": token, "token_type": "bearer", "user": auth.as_dict()}


@app.post("/api/auth/sign-up", response_model=SessionOut, status_code=201,
          tags=["Auth"], summary="Create a founder or investor account and sign in")
async def sign_up(body: SignUpRequest, session: Session = Depends(db_session),
                  identity: IdentityService = Depends(identity_service)):
    try:
        token, auth = identity.sign_up(session, body.email, body.password, body.name, body.role)
    except DuplicateEmailError as exc:
        raise HTTPException(409, str(exc)) from exc
    except AuthError as exc:
        raise HTTPException(400, str(exc)) from exc
    return _session_out(token, auth)


@app.post("/api/auth/sign-in", response_model=SessionOut,
          tags=["Auth"], summary="Sign in with email and password")
async def sign_in(body: SignInRequest, session: Session = Depends(db_session),
                  identity: IdentityService = Depends(identity_service)):
    try:
        token, auth = identity.sign_in(session, body.email, body.password)
    except AuthError as exc:
        raise HTTPException(401, str(exc)) from exc
    return _session_out(token, auth)


@app.post("/api/auth/sign-out", tags=["Auth"],
          summary="Revoke this session (local) or every session of the account (global)")
async def sign_out(scope: str = Query("local", description="local or global"),
                   token: str = Depends(bearer_token), session: Session = Depends(db_session),
                   identity: IdentityService = Depends(identity_service)):
    try:
        revoked = identity.sign_out(session, token, scope)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {"revoked": revoked}


@app.get("/api/auth/session", response_model=UserOut, tags=["Auth"], summary="Current signed-in user")
async def auth_session(auth: AuthContext = Depends(current_user)):
    return auth.as_dict()


# ---------------------------------------------------------------------------
# Routes: Profiles
# ---------------------------------------------------------------------------


@app.get("/api/profiles", response_model=list[ProfileOut],
         tags=["Profiles"], summary="List profiles, optionally by role and name search")
async def list_profiles(role: str | None = Query(None, description="founder or investor"),
                        search: str | None = Query(None, description="Case-insensitive name search"),
                        auth: AuthContext = Depends(current_user),
                        session: Session = Depends(db_session)):
    try:
        profiles = services.list_profiles(session, role)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return services.search_profiles(profiles, search)


@app.get("/api/profiles/{profile_id}", response_model=ProfileOut, tags=["Profiles"], summary="Get a profile")
async def get_profile(profile_id: str, auth: AuthContext = Depends(current_user),
                      session: Session = Depends(db_session)):
    profile = services.get_profile(session, profile_id)
    if profile is None:
        raise HTTPException(404, "Profile not found")
    return profile


@app.get("/api/reference", response_model=ReferenceOut, tags=["Profiles"],
         summary="Tags, funding stages, regions, industries and statuses used by filters and forms")
async def reference():
    return services.reference_lists()


# ---------------------------------------------------------------------------
# Routes: Pitches (fixed paths before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.post("/api/pitches", response_model=PitchOut, status_code=201,
          tags=["Pitches"], summary="Submit a pitch")
async def create_pitch(body: PitchSubmission, auth: AuthContext = Depends(founder_user),
                       session: Session = Depends(db_session), feed: ChangeFeed = Depends(change_feed)):
    try:
        return services.create_pitch(session, auth.user_id, body.model_dump(), feed=feed)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@app.get("/api/pitches", response_model=list[PitchOut],
         tags=["Pitches"], summary="List pitches with owner profile, newest first")
async def list_pitches(
    status: str | None = Query(None, description="Comma-separated: new, shortlisted, rejected, forwarded"),
    industry: str | None = Query(None),
    funding_stage: str | None = Query(None),
    search: str | None = Query(None, description="Free-text search across company, description and industry"),
    auth: AuthContext = Depends(current_user),
    session: Session = Depends(db_session),
):
    return services.list_pitches(
        session, status=status, industry=industry, funding_stage=funding_stage, search=search,
    )


@app.get("/api/pitches/mine", response_model=list[PitchOut],
         tags=["Pitches"], summary="Pitches submitted by the signed-in founder")
async def my_pitches(auth: AuthContext = Depends(founder_user), session: Session = Depends(db_session)):
    return services.founder_pitches(session, auth.user_id)


@app.post("/api/pitches/bulk-status", response_model=BulkStatusResult,
          tags=["Pitches"], summary="Set the same status on several pitches")
async def bulk_status(body: BulkStatusUpdate, auth: AuthContext = Depends(investor_user),
                      session: Session = Depends(db_session), feed: ChangeFeed = Depends(change_feed)):
    return {"updated": services.bulk_update_status(session, body.pitch_ids, body.status, feed=feed)}


@app.get("/api/pitches/{pitch_id}", response_model=PitchOut, tags=["Pitches"], summary="Get a pitch")
async def get_pitch(pitch_id: str, auth: AuthContext = Depends(current_user),
                    session: Session = Depends(db_session)):
    pitch = services.get_pitch(session, pitch_id)
    if pitch is None:
        raise HTTPException(404, "Pitch not found")
    return pitch


@app.put("/api/pitches/{pitch_id}/status", response_model=PitchOut,
         tags=["Pitches"], summary="Overwrite a pitch's status (no notification)")
async def update_status(pitch_id: str, body: StatusUpdate, auth: AuthContext = Depends(investor_user),
                        session: Session = Depends(db_session), feed: ChangeFeed = Depends(change_feed)):
    pitch = services.update_pitch_status(session, pitch_id, body.status, feed=feed)
    if pitch is None:
        raise HTTPException(404, "Pitch not found")
    return pitch


@app.post("/api/pitches/{pitch_id}/actions", response_model=PitchActionResult,
          tags=["Pitches"], summary="Shortlist, reject or forward a pitch and email the founder")
async def pitch_action(pitch_id: str, body: PitchActionRequest,
                       auth: AuthContext = Depends(investor_user),
                       session: Session = Depends(db_session),
                       feed: ChangeFeed = Depends(change_feed),
                       email: Notifier = Depends(notifier)):
    try:
        return await submit_pitch_action(
            session, auth, pitch_id, body.action, notes=body.notes, notifier=email, feed=feed,
        )
    except NotAuthenticatedError as exc:
        raise HTTPException(401, str(exc)) from exc
    except PitchNotFoundError as exc:
        raise HTTPException(404, "Pitch not found") from exc
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Tags & notes
# ---------------------------------------------------------------------------


@app.get("/api/pitches/{pitch_id}/tags", response_model=list[TagOut], tags=["Review"])
async def list_tags(pitch_id: str, auth: AuthContext = Depends(investor_user),
                    session: Session = Depends(db_session)):
    return services.list_tags(session, pitch_id, auth.user_id)


@app.post("/api/pitches/{pitch_id}/tags", response_model=TagOut, status_code=201, tags=["Review"])
async def add_tag(pitch_id: str, body: TagCreate, auth: AuthContext = Depends(investor_user),
                  session: Session = Depends(db_session)):
    try:
        tag = services.add_tag(session, pitch_id, auth.user_id, body.name)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    if tag is None:
        raise HTTPException(404, "Pitch not found")
    return tag


@app.delete("/api/tags/{tag_id}", tags=["Review"])
async def remove_tag(tag_id: int, auth: AuthContext = Depends(investor_user),
                     session: Session = Depends(db_session)):
    if not services.remove_tag(session, tag_id, auth.user_id):
        raise HTTPException(404, "Tag not found")
    return {"ok": True}


@app.get("/api/pitches/{pitch_id}/notes", response_model=list[NoteOut], tags=["Review"])
async def list_notes(pitch_id: str, auth: AuthContext = Depends(investor_user),
                     session: Session = Depends(db_session)):
    return services.list_notes(session, pitch_id, auth.user_id)


@app.post("/api/pitches/{pitch_id}/notes", response_model=NoteOut, status_code=201, tags=["Review"])
async def add_note(pitch_id: str, body: NoteCreate, auth: AuthContext = Depends(investor_user),
                   session: Session = Depends(db_session)):
    try:
        note = services.add_note(session, pitch_id, auth.user_id, body.content)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    if note is None:
        raise HTTPException(404, "Pitch not found")
    return note


# ---------------------------------------------------------------------------
# Routes: Uploads
# ---------------------------------------------------------------------------


@app.post("/api/uploads/pitch-deck", response_model=UploadOut, status_code=201,
          tags=["Uploads"], summary="Upload a PDF pitch deck (max 10MB)")
async def upload_deck(file: UploadFile = File(...), auth: AuthContext = Depends(current_user),
                      store: LocalBlobStore = Depends(blob_store)):
    data = await file.read(PITCH_DECK_MAX_BYTES + 1)
    try:
        return {"url": upload_pitch_deck(store, file.content_type, data)}
    except UploadValidationError as exc:
        raise HTTPException(400, str(exc)) from exc


@app.post("/api/uploads/pitch-video", response_model=UploadOut, status_code=201,
          tags=["Uploads"], summary="Upload an MP4, MOV or AVI intro video (max 100MB)")
async def upload_video(file: UploadFile = File(...), auth: AuthContext = Depends(current_user),
                       store: LocalBlobStore = Depends(blob_store)):
    data = await file.read(PITCH_VIDEO_MAX_BYTES + 1)
    try:
        return {"url": upload_pitch_video(store, file.filename, file.content_type, data)}
    except UploadValidationError as exc:
        raise HTTPException(400, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Messages
# ---------------------------------------------------------------------------


@app.get("/api/conversations", response_model=list[ConversationOut],
         tags=["Messages"], summary="One summary per counterpart, newest first")
async def list_conversations(auth: AuthContext = Depends(current_user),
                             session: Session = Depends(db_session)):
    return messaging.get_user_conversations(session, auth.user_id)


@app.get("/api/conversations/{other_id}/messages", response_model=list[ThreadMessageOut],
         tags=["Messages"], summary="Messages with one counterpart, oldest first (does not mark read)")
async def get_thread(other_id: str, auth: AuthContext = Depends(current_user),
                     session: Session = Depends(db_session)):
    return messaging.get_thread(session, auth.user_id, other_id)


@app.post("/api/conversations/{other_id}/read", response_model=MarkReadResult,
          tags=["Messages"], summary="Mark every unread message from a counterpart as read")
async def mark_read(other_id: str, auth: AuthContext = Depends(current_user),
                    session: Session = Depends(db_session), feed: ChangeFeed = Depends(change_feed)):
    return {"marked": messaging.mark_thread_read(session, auth.user_id, other_id, feed=feed)}


@app.post("/api/messages", response_model=MessageOut, status_code=201,
          tags=["Messages"], summary="Send a message and email the receiver (best effort)")
async def send_message(body: MessageCreate, auth: AuthContext = Depends(current_user),
                       session: Session = Depends(db_session), feed: ChangeFeed = Depends(change_feed),
                       email: Notifier = Depends(notifier)):
    try:
        msg = messaging.send_message(
            session, auth.user_id, body.receiver_id, body.content, pitch_id=body.pitch_id, feed=feed,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    if msg is None:
        raise HTTPException(404, "Receiver not found")
    try:
        await email.new_message(MessagePayload(
            message_id=msg["id"], sender_id=msg["sender_id"], receiver_id=msg["receiver_id"],
            content=msg["content"], created_at=msg["created_at"],
        ))
    except Exception as exc:
        log.warning("Message notification failed for %s: %s", msg["id"], exc)
    return msg


@app.get("/api/messages/unread-count", response_model=UnreadCountOut,
         tags=["Messages"], summary="Unread messages addressed to the signed-in user")
async def unread_count(auth: AuthContext = Depends(current_user), session: Session = Depends(db_session)):
    return {"count": messaging.count_unread(session, auth.user_id)}


@app.get("/api/messages/unread-count/stream", tags=["Realtime"],
         summary="Unread count now and after every change addressed to the user (SSE)")
async def unread_count_stream(auth: AuthContext = Depends(current_user),
                              feed: ChangeFeed = Depends(change_feed)):
    async def stream() -> AsyncIterator[str]:
        async for count in messaging.unread_count_stream(feed, auth.user_id, get_session):
            yield _sse({"type": "unread_count", "count": count})

    return StreamingResponse(stream(), media_type="text/event-stream")


# ---------------------------------------------------------------------------
# Routes: Realtime
# ---------------------------------------------------------------------------


@app.get("/api/realtime", tags=["Realtime"], summary="Change notifications for a table (SSE)")
async def realtime(table: str = Query(..., description="messages or pitches"),
                   auth: AuthContext = Depends(current_user),
                   feed: ChangeFeed = Depends(change_feed)):
    if table not in REALTIME_TABLES:
        raise HTTPException(400, f"table must be one of: {', '.join(REALTIME_TABLES)}")
    def involves_user(record: dict) -> bool:
        return auth.user_id in (record.get("sender_id"), record.get("receiver_id"))

    match = involves_user if table == "messages" else None

    async def stream() -> AsyncIterator[str]:
        async for change in feed.listen(table, match=match):
            yield _sse({"type": "change", **change.as_dict()})

    return StreamingResponse(stream(), media_type="text/event-stream")


# ---------------------------------------------------------------------------
# Routes: Portfolio & analytics
# ---------------------------------------------------------------------------


@app.get("/api/portfolio", response_model=PortfolioOut,
         tags=["Insights"], summary="Shortlisted pitches with funding totals by industry and stage")
async def portfolio(auth: AuthContext = Depends(investor_user), session: Session = Depends(db_session)):
    return analytics_service.portfolio_summary(services.list_pitches(session, status="shortlisted"))


@app.get("/api/analytics", response_model=AnalyticsOut,
         tags=["Insights"], summary="Pitch flow and industry distribution over a time window")
async def get_analytics(
    time_range: str = Query("1M", description="1W, 1M, 3M, 6M or 1Y"),
    industry: str | None = Query(None),
    funding_stage: str | None = Query(None),
    auth: AuthContext = Depends(investor_user),
    session: Session = Depends(db_session),
):
    return analytics_service.analytics(session, time_range, industry, funding_stage)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("pitchsync.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
