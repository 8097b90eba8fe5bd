"""
Compatibility scoring between a request and a candidate provider/slot.

One pure function serves every call site (search ranking, waitlist matching,
shift application review); each call site passes its own ``ScoringWeights``.
Every factor is normalised to 0.0 - 1.0 before weighting, and the total is
clamped to 0 - 100.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ...shared.timeutils import days_until

# (max days until next open slot, fraction of the availability weight)
DEFAULT_AVAILABILITY_STEPS = ((1, 1.0), (3, 0.75), (7, 0.5))


@dataclass(frozen=True)
class ScoringWeights:
    specialty: float = 40.0
    rating: float = 20.0
    language: float = 10.0
    availability: float = 20.0
    urgency: float = 10.0
    availability_steps: tuple = DEFAULT_AVAILABILITY_STEPS


SEARCH_WEIGHTS = ScoringWeights()
WAITLIST_WEIGHTS = ScoringWeights(specialty=40, rating=15, language=10, availability=20, urgency=15)
# Shift applications: specialty fit, rating and emergency cover only
SHIFT_APPLICATION_WEIGHTS = ScoringWeights(
    specialty=40, rating=30, language=0, availability=0, urgency=30
)


@dataclass(frozen=True)
class MatchCriteria:
    """What a request asks for, independent of where the request came from"""

    specialties: tuple
    language: Optional[str] = None


@dataclass(frozen=True)
class ScoringContext:
    now: datetime
    next_available: Optional[datetime] = None
    urgent: bool = False


@dataclass(frozen=True)
class MatchScore:
    candidate_id: int
    score: float
    breakdown: dict = field(default_factory=dict)
    next_available: Optional[datetime] = None
    rating: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "candidate_id": self.candidate_id,
            "score": self.score,
            "breakdown": dict(self.breakdown),
            "next_available": self.next_available.isoformat() if self.next_available else None,
        }


def _casefold_set(values: Iterable) -> set:
    return {str(v).casefold() for v in (values or ()) if v}


def specialty_factor(criteria: MatchCriteria, candidate) -> float:
    wanted = _casefold_set(criteria.specialties)
    return 1.0 if wanted & _casefold_set(candidate.specialties) else 0.0


def rating_factor(candidate) -> float:
    if candidate.rating is None:
        return 0.0
    return max(0.0, min(1.0, candidate.rating / 5.0))


def language_factor(criteria: MatchCriteria, candidate) -> float:
    if not criteria.language:
        return 0.0
    return 1.0 if criteria.language.casefold() in _casefold_set(candidate.languages) else 0.0


def availability_factor(days: Optional[int], steps=DEFAULT_AVAILABILITY_STEPS) -> float:
    """Step function: sooner availability never scores lower"""
    if days is None:
        return 0.0
    for max_days, fraction in steps:
        if days <= max_days:
            return fraction
    return 0.0


def score(criteria: MatchCriteria, candidate, context: ScoringContext,
          weights: ScoringWeights = SEARCH_WEIGHTS) -> MatchScore:
    """Deterministic weighted score; no I/O, no clock reads beyond ``context.now``"""
    days = days_until(context.next_available, context.now)
    breakdown = {
        "specialty": round(weights.specialty * specialty_factor(criteria, candidate), 4),
        "rating": round(weights.rating * rating_factor(candidate), 4),
        "language": round(weights.language * language_factor(criteria, candidate), 4),
        "availability": round(
            weights.availability * availability_factor(days, weights.availability_steps), 4
        ),
        "urgency": round(weights.urgency if context.urgent else 0.0, 4),
    }
    total = max(0.0, min(100.0, sum(breakdown.values())))
    return MatchScore(
        candidate_id=candidate.id,
        score=round(total, 2),
        breakdown=breakdown,
        next_available=context.next_available,
        rating=candidate.rating,
    )


def ranking_key(match: MatchScore):
    """Score desc, earliest next slot (none last), rating desc, id asc"""
    has_slot = match.next_available is not None
    return (
        -match.score,
        0 if has_slot else 1,
        match.next_available if has_slot else datetime.max,
        -(match.rating or 0.0),
        match.candidate_id,
    )


def rank(matches: Iterable[MatchScore]) -> list[MatchScore]:
    return sorted(matches, key=ranking_key)
