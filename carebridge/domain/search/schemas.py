"""Search domain schemas - Pydantic models for validation"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ..directory.schemas import ProviderCandidate

CONSULTATION_TYPES = ("video", "in-person")

LEVEL_EXACT = "exact"
LEVEL_RELAXED_RATING = "relaxed_rating"
LEVEL_MAX_RELAXATION = "max_relaxation"
LEVEL_NONE = "none"


class SearchRequest(BaseModel):
    """Patient-facing specialist search filters"""

    specialty: str
    language: Optional[str] = None
    condition: Optional[str] = None
    timeZone: Optional[str] = None
    consultationType: Optional[str] = None
    minFee: Optional[float] = Field(None, ge=0)
    maxFee: Optional[float] = Field(None, ge=0)
    acceptsInsurance: Optional[bool] = None
    minRating: Optional[float] = Field(None, ge=0, le=5)
    verifiedOnly: bool = True

    model_config = {"frozen": True}

    @field_validator("language", "condition", "timeZone")
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v

    @field_validator("consultationType")
    @classmethod
    def validate_consultation_type(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if v not in CONSULTATION_TYPES:
            raise ValueError(f"consultationType must be one of: {', '.join(CONSULTATION_TYPES)}")
        return v

    def cache_filters(self) -> dict:
        """Canonical filter dict used for the search cache key"""
        return {
            "specialty": self.specialty.strip().casefold(),
            "language": self.language.casefold() if self.language else None,
            "condition": self.condition.casefold() if self.condition else None,
            "timezone": self.timeZone,
            "consultation_type": self.consultationType,
            "min_fee": self.minFee,
            "max_fee": self.maxFee,
            "accepts_insurance": self.acceptsInsurance,
            "min_rating": self.minRating,
            "verified_only": self.verifiedOnly,
        }


@dataclass(frozen=True)
class Relaxation:
    field: str
    from_value: Any
    to_value: Any

    def to_dict(self) -> dict:
        return {"field": self.field, "from": self.from_value, "to": self.to_value}


@dataclass(frozen=True)
class ConstraintRelaxationResult:
    level: str
    relaxations_applied: tuple = ()
    candidates: tuple = ()
    total_count: int = 0
    waitlist_suggested: bool = False

    @property
    def candidate_ids(self) -> list[int]:
        return [c.id for c in self.candidates]


@dataclass
class RankedSpecialist:
    candidate: ProviderCandidate
    match_score: float
    score_breakdown: dict = field(default_factory=dict)
    next_available: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = self.candidate.to_dict()
        data.update(
            {
                "match_score": self.match_score,
                "score_breakdown": self.score_breakdown,
                "next_available": self.next_available,
            }
        )
        return data


class RelaxationResponse(BaseModel):
    field: str
    from_: Any = Field(None, alias="from")
    to: Any = None

    model_config = {"populate_by_name": True}


class SpecialistResult(BaseModel):
    id: int
    name: str
    specialties: list[str]
    rating: Optional[float] = None
    total_reviews: int = 0
    languages: list[str]
    conditions: list[str]
    timezone: Optional[str] = None
    video_enabled: bool
    in_person_enabled: bool
    fee_min: Optional[float] = None
    fee_max: Optional[float] = None
    accepts_insurance: bool
    verification_status: str
    match_score: float
    score_breakdown: dict
    next_available: Optional[datetime] = None


class SearchResponse(BaseModel):
    success: bool = True
    specialists: list[SpecialistResult]
    constraint_level: str
    relaxations_applied: list[RelaxationResponse]
    message: Optional[str] = None
    total_count: int
    waitlist_suggested: bool
    source: str
