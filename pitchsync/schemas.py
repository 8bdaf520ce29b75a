"""Pydantic request/response schemas for the PitchSync API."""
from __future__ import annotations

from pydantic import BaseModel, field_validator

from pitchsync.models import PITCH_STATUSES, ROLES
from pitchsync.normalizer import ANSWER_COLUMNS

# ---------------------------------------------------------------------------
# Auth & profiles
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    email: str
    password: str
    name: str
    role: str

    @field_validator("role")
    @classmethod
    def role_must_be_known(cls, v: str) -> str:
        if v not in ROLES:
            raise ValueError(f"role must be one of: {', '.join(ROLES)}")
        return v


class SignInRequest(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: str
    email: str
    name: str | None = None
    role: str


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class ReferenceOut(BaseModel):
    tags: list[str]
    funding_stages: list[str]
    regions: list[str]
    industries: list[str]
    statuses: list[str]


class ProfileOut(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None
    role: str
    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Pitches
# ---------------------------------------------------------------------------


class AnswerOut(BaseModel):
    question: str
    answer: str


class PitchOut(BaseModel):
    id: str
    company_name: str
    founder_id: str | None = None
    founder_name: str
    email: str
    industry: str
    location: str
    description: str
    funding_stage: str
    funding_amount: str
    funding_value: float = 0.0
    pitch_deck_url: str
    video_url: str | None = None
    status: str
    created_at: str
    answers: list[AnswerOut]
    ai_summary: str
    ai_score: int


class PitchSubmission(BaseModel):
    company_name: str
    description: str = ""
    industry: str = ""
    location: str = ""
    funding_stage: str = ""
    funding_amount: str = "0"
    pitch_deck_url: str | None = None
    video_url: str | None = None
    answers: list[str] = []

    @field_validator("company_name")
    @classmethod
    def company_name_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("company_name must not be blank")
        return v.strip()

    @field_validator("answers")
    @classmethod
    def at_most_five_answers(cls, v: list[str]) -> list[str]:
        if len(v) > len(ANSWER_COLUMNS):
            raise ValueError(f"at most {len(ANSWER_COLUMNS)} answers are accepted")
        return v


class StatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def status_must_be_known(cls, v: str) -> str:
        if v not in PITCH_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(PITCH_STATUSES)}")
        return v


class BulkStatusUpdate(StatusUpdate):
    pitch_ids: list[str]


class BulkStatusResult(BaseModel):
    updated: int


class PitchActionRequest(BaseModel):
    action: str
    notes: str | None = None


class PitchActionResult(BaseModel):
    success: bool
    pitch_id: str
    status: str
    notified: bool


class TagCreate(BaseModel):
    name: str


class TagOut(BaseModel):
    id: int
    pitch_id: str
    name: str
    created_at: str | None = None


class NoteCreate(BaseModel):
    content: str


class NoteOut(BaseModel):
    id: int
    pitch_id: str
    content: str
    created_at: str | None = None
    updated_at: str | None = None


class UploadOut(BaseModel):
    url: str


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


class MessageCreate(BaseModel):
    receiver_id: str
    content: str
    pitch_id: str | None = None


class MessageOut(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    pitch_id: str | None = None
    content: str
    created_at: str | None = None
    read: bool


class ThreadMessageOut(MessageOut):
    sender_name: str
    sender_role: str


class ConversationOut(BaseModel):
    user_id: str
    user_name: str
    user_role: str
    unread_count: int
    last_message: MessageOut
    last_message_date: str | None = None


class UnreadCountOut(BaseModel):
    count: int


class MarkReadResult(BaseModel):
    marked: int


# ---------------------------------------------------------------------------
# Portfolio & analytics
# ---------------------------------------------------------------------------


class NamedValue(BaseModel):
    name: str
    value: float


class PortfolioOut(BaseModel):
    pitches: list[PitchOut]
    count: int
    total_funding: float
    avg_deal_size: float
    by_industry: list[NamedValue]
    by_stage: list[NamedValue]


class PitchFlowPoint(BaseModel):
    period: str
    count: int
    ai_score: int


class AnalyticsOut(BaseModel):
    time_range: str
    total: int
    pitch_flow: list[PitchFlowPoint]
    industry_data: list[NamedValue]
