from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from pitchsync import analytics as analytics_service
from pitchsync import messaging, services
from pitchsync.db import init_db, session_scope
from pitchsync.models import PITCH_STATUSES
from pitchsync.normalizer import PITCH_QUESTIONS

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def pitchsync_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "PitchSync",
    instructions=(
        "PitchSync connects startup founders with investors. "
        "Use these tools to browse pitches, read conversations and unread counts, "
        "and look at the investor portfolio and pitch-flow analytics. "
        "Start with list_pitches() to browse, then get_pitch(id) for full details."
    ),
    lifespan=pitchsync_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("pitchsync://overview")
def pitchsync_overview() -> str:
    """Overview of PitchSync: data model, pitch statuses and the fixed pitch questions."""
    return json.dumps({
        "system": "PitchSync: founder pitches, investor review and messaging",
        "data_model": {
            "profile": "Public identity of an account. Role is founder or investor and never changes.",
            "pitch": "A founder's submission: company, funding ask, deck/video links and five Q&A answers.",
            "message": "A directed note between two profiles, optionally about a pitch. Has a read flag.",
            "conversation": "Derived per counterpart: last message and unread count. Not stored.",
        },
        "statuses": {
            "new": "Submitted, not yet reviewed.",
            "shortlisted": "An investor is interested. Counts towards the portfolio.",
            "rejected": "An investor passed.",
            "forwarded": "An investor forwarded the pitch to their network.",
        },
        "status_order": list(PITCH_STATUSES),
        "questions": list(PITCH_QUESTIONS),
        "reference": services.reference_lists(),
        "ai_fields": "ai_score and ai_summary are placeholders (random score, templated sentence).",
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Pitches
# ---------------------------------------------------------------------------


@mcp.tool()
def list_pitches(
    status: str | None = None, industry: str | None = None,
    funding_stage: str | None = None, search: str | None = None, limit: int = 50,
) -> list[dict]:
    """List pitches, newest first.

    Args:
        status: Comma-separated from: new, shortlisted, rejected, forwarded.
        industry: Exact industry, e.g. "Fintech".
        funding_stage: Exact stage, e.g. "Seed".
        search: Free-text search across company name, description and industry.
        limit: Max results (default 50, max 500).
    """
    with session_scope() as session:
        items = services.list_pitches(
            session, status=status, industry=industry, funding_stage=funding_stage, search=search,
        )
        return items[:max(1, min(limit, 500))]


@mcp.tool()
def get_pitch(pitch_id: str) -> dict:
    """Get a single pitch with founder, answers and AI fields."""
    with session_scope() as session:
        pitch = services.get_pitch(session, pitch_id)
        return pitch if pitch else {"error": f"Pitch {pitch_id} not found"}


# ---------------------------------------------------------------------------
# Tools: Messages
# ---------------------------------------------------------------------------


@mcp.tool()
def list_conversations(user_id: str) -> list[dict]:
    """Conversation summaries for a user: one per counterpart, newest first."""
    with session_scope() as session:
        return messaging.get_user_conversations(session, user_id)


@mcp.tool()
def get_unread_count(user_id: str) -> dict:
    """Number of unread messages addressed to a user."""
    with session_scope() as session:
        return {"user_id": user_id, "count": messaging.count_unread(session, user_id)}


# ---------------------------------------------------------------------------
# Tools: Insights
# ---------------------------------------------------------------------------


@mcp.tool()
def get_portfolio() -> dict:
    """Shortlisted pitches with total funding, average deal size and breakdowns."""
    with session_scope() as session:
        return analytics_service.portfolio_summary(services.list_pitches(session, status="shortlisted"))


@mcp.tool()
def get_analytics(time_range: str = "1M", industry: str | None = None, funding_stage: str | None = None) -> dict:
    """Pitch flow and industry distribution.

    Args:
        time_range: One of 1W, 1M, 3M, 6M, 1Y (unknown values use 1M).
        industry: Optional exact industry filter.
        funding_stage: Optional exact funding stage filter.
    """
    with session_scope() as session:
        return analytics_service.analytics(session, time_range, industry, funding_stage)


def main():
    """Run the PitchSync MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
