"""Map persisted pitch rows to the pitch view model.

The five Q&A pairs are positional: ``ANSWER_COLUMNS[i]`` always holds the
answer to ``PITCH_QUESTIONS[i]``, on the write path and on the read path.
Question text is never matched.

``normalize_pitch`` never raises for missing data; every absent field is
replaced by a default.
"""
from __future__ import annotations

import logging
import math
import re
from decimal import Decimal
from typing import Any, Sequence

from pitchsync.scoring import PlaceholderScoring, ScoringInput, ScoringProvider
from pitchsync.utils import isoformat, utcnow

log = logging.getLogger(__name__)

PITCH_QUESTIONS: tuple[str, ...] = (
    "What problem are you solving?",
    "What is your unique solution?",
    "What traction do you have?",
    "Tell us about your team.",
    "What are your growth projections?",
)

ANSWER_COLUMNS: tuple[str, ...] = (
    "problem_statement",
    "solution_description",
    "traction",
    "team_description",
    "growth_projections",
)

PLACEHOLDER_DECK_URL = "/placeholder.svg"
UNKNOWN_FOUNDER = "Unknown Founder"

_NON_NUMERIC = re.compile(r"[^0-9.\-]+")
_LEADING_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")

default_scoring = PlaceholderScoring()


# ---------------------------------------------------------------------------
# Funding amount
# ---------------------------------------------------------------------------


def parse_funding_amount(text: str | None) -> float:
    """Parse a display amount such as ``"$500,000"`` into a number.

    Currency symbols, separators and words are dropped. Anything that still
    does not start with a number becomes 0.0.
    """
    cleaned = _NON_NUMERIC.sub("", text or "")
    m = _LEADING_NUMBER.match(cleaned)
    if not m:
        return 0.0
    value = float(m.group(0))
    return value if math.isfinite(value) else 0.0


def format_funding_amount(value: float | int | None) -> str:
    """String form of a stored amount; original formatting is not recovered.

    Plain decimal notation only, so the result parses back to the same value.
    """
    if not value or not math.isfinite(value):
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return format(Decimal(repr(float(value))), "f")


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


def answers_to_columns(answers: Sequence[str | None]) -> dict[str, str]:
    """Positional write path: answer *i* is stored in ``ANSWER_COLUMNS[i]``."""
    if len(answers) > len(ANSWER_COLUMNS):
        raise ValueError(f"At most {len(ANSWER_COLUMNS)} answers are accepted")
    padded = list(answers) + [None] * (len(ANSWER_COLUMNS) - len(answers))
    return {col: (ans or "") for col, ans in zip(ANSWER_COLUMNS, padded)}


def columns_to_answers(row: Any) -> list[dict[str, str]]:
    """Positional read path, the inverse of :func:`answers_to_columns`."""
    return [
        {"question": question, "answer": getattr(row, col, None) or ""}
        for question, col in zip(PITCH_QUESTIONS, ANSWER_COLUMNS)
    ]


# ---------------------------------------------------------------------------
# View model
# ---------------------------------------------------------------------------


def scoring_input(row: Any) -> ScoringInput:
    return ScoringInput(
        company_name=getattr(row, "company_name", None) or "",
        description=getattr(row, "company_description", None) or "",
        funding_amount=format_funding_amount(getattr(row, "funding_amount", None)),
        funding_stage=getattr(row, "funding_stage", None) or "",
    )


def normalize_pitch(row: Any, scoring: ScoringProvider | None = None) -> dict[str, Any]:
    """Build the pitch view model from a persisted row and its joined profile."""
    scoring = scoring or default_scoring
    profile = getattr(row, "profile", None)
    fields = scoring_input(row)

    ai_score = getattr(row, "ai_score", None)
    if ai_score is None:
        ai_score = scoring.score(fields)

    amount = getattr(row, "funding_amount", None) or 0.0
    created_at = getattr(row, "created_at", None) or utcnow()

    return {
        "id": getattr(row, "id", None) or "",
        "company_name": fields.company_name,
        "founder_id": getattr(row, "user_id", None),
        "founder_name": (getattr(profile, "name", None) if profile else None) or UNKNOWN_FOUNDER,
        "email": (getattr(profile, "email", None) if profile else None) or "",
        "industry": getattr(row, "industry", None) or "",
        "location": getattr(row, "location", None) or "",
        "description": fields.description,
        "funding_stage": fields.funding_stage,
        "funding_amount": fields.funding_amount,
        "funding_value": float(amount) if math.isfinite(amount) else 0.0,
        "pitch_deck_url": getattr(row, "pitch_deck_url", None) or PLACEHOLDER_DECK_URL,
        "video_url": getattr(row, "intro_video_url", None),
        "status": getattr(row, "status", None) or "new",
        "created_at": isoformat(created_at),
        "answers": columns_to_answers(row),
        "ai_summary": scoring.summarize(fields),
        "ai_score": ai_score,
    }
