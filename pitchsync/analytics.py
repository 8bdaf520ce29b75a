"""Investor portfolio figures and pitch-flow analytics."""
from __future__ import annotations

import calendar
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from pitchsync.models import Pitch
from pitchsync.normalizer import parse_funding_amount
from pitchsync.utils import utcnow

log = logging.getLogger(__name__)

TIME_RANGES = ("1W", "1M", "3M", "6M", "1Y")
DEFAULT_TIME_RANGE = "1M"
_RANGE_MONTHS = {"1M": 1, "3M": 3, "6M": 6, "1Y": 12}


def _months_ago(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 - months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def window_start(time_range: str, now: datetime) -> datetime:
    if time_range == "1W":
        return now - timedelta(days=7)
    return _months_ago(now, _RANGE_MONTHS.get(time_range, _RANGE_MONTHS[DEFAULT_TIME_RANGE]))


def _amount(pitch: dict) -> float:
    value = pitch.get("funding_value")
    if value is not None:
        return float(value)
    return parse_funding_amount(str(pitch.get("funding_amount") or "0"))


def _sum_by(pitches: list[dict], key: str) -> list[dict]:
    totals: dict[str, float] = defaultdict(float)
    for p in pitches:
        totals[p.get(key) or "Other"] += _amount(p)
    return [{"name": name, "value": value} for name, value in totals.items()]


def portfolio_summary(pitches: list[dict]) -> dict[str, Any]:
    """Aggregate figures over the shortlisted pitches in *pitches* (normalized views)."""
    portfolio = [p for p in pitches if p.get("status") == "shortlisted"]
    total = sum(_amount(p) for p in portfolio)
    return {
        "pitches": portfolio,
        "count": len(portfolio),
        "total_funding": total,
        "avg_deal_size": total / len(portfolio) if portfolio else 0,
        "by_industry": _sum_by(portfolio, "industry"),
        "by_stage": _sum_by(portfolio, "funding_stage"),
    }


def pitch_flow(rows: list[Pitch], time_range: str) -> list[dict]:
    """Pitch counts and mean persisted score per weekday (1W) or per month."""
    fmt = "%a" if time_range == "1W" else "%b %Y"
    buckets: dict[str, dict[str, Any]] = {}
    for row in sorted((r for r in rows if r.created_at), key=lambda r: r.created_at):
        key = row.created_at.strftime(fmt)
        b = buckets.setdefault(key, {"count": 0, "total": 0, "scored": 0})
        b["count"] += 1
        if row.ai_score is not None:
            b["total"] += row.ai_score
            b["scored"] += 1
    return [
        {"period": key, "count": b["count"],
         "ai_score": round(b["total"] / b["scored"]) if b["scored"] else 0}
        for key, b in buckets.items()
    ]


def analytics(
    session: Session,
    time_range: str = DEFAULT_TIME_RANGE,
    industry: str | None = None,
    funding_stage: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if time_range not in TIME_RANGES:
        log.debug("Unknown time range %r, using %s", time_range, DEFAULT_TIME_RANGE)
        time_range = DEFAULT_TIME_RANGE
    now = now or utcnow()
    query = select(Pitch).where(Pitch.created_at >= window_start(time_range, now))
    if industry and industry != "all":
        query = query.where(Pitch.industry == industry)
    if funding_stage and funding_stage != "all":
        query = query.where(Pitch.funding_stage == funding_stage)
    rows = list(session.execute(query).scalars().all())

    industries = Counter(r.industry for r in rows if r.industry)
    return {
        "time_range": time_range,
        "total": len(rows),
        "pitch_flow": pitch_flow(rows, time_range),
        "industry_data": [{"name": name, "value": count} for name, count in industries.items()],
    }
