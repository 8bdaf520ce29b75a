"""Scoring boundary for the "AI" fields shown on a pitch.

The current provider is a placeholder: the score is a pseudo-random integer in
[65, 95) and the summary is a fixed sentence template. Nothing here calls a
model. A real backend only has to implement :class:`ScoringProvider`; the
normalizer and pitch creation take the provider as a parameter.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Protocol

SCORE_MIN = 65
SCORE_MAX = 95  # exclusive

SUMMARY_TEMPLATE = (
    "{company_name} is developing {description} "
    "The founder is seeking {funding_amount} at {funding_stage} stage."
)


@dataclass
class ScoringInput:
    company_name: str
    description: str
    funding_amount: str
    funding_stage: str


class ScoringProvider(Protocol):
    def score(self, fields: ScoringInput) -> int: ...

    def summarize(self, fields: ScoringInput) -> str: ...


class PlaceholderScoring:
    """Templated summary plus a random score. Not an inference call."""

    def __init__(self, seed: int | None = None):
        self._rng = random.Random(seed)

    def score(self, fields: ScoringInput) -> int:
        return self._rng.randrange(SCORE_MIN, SCORE_MAX)

    def summarize(self, fields: ScoringInput) -> str:
        return SUMMARY_TEMPLATE.format(
            company_name=fields.company_name,
            description=fields.description,
            funding_amount=fields.funding_amount,
            funding_stage=fields.funding_stage,
        )
