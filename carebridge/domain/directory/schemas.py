"""Provider directory projections - read-only views used by search and scoring"""

from dataclasses import dataclass, replace
from typing import Optional

VERIFIED = ("verified",)
VERIFIED_OR_PENDING = ("verified", "pending")


@dataclass(frozen=True)
class ProviderCandidate:
    id: int
    user_id: Optional[int]
    name: str
    specialties: tuple = ()
    rating: Optional[float] = None
    total_reviews: int = 0
    languages: tuple = ()
    conditions: tuple = ()
    timezone: Optional[str] = None
    video_enabled: bool = False
    in_person_enabled: bool = False
    fee_min: Optional[float] = None
    fee_max: Optional[float] = None
    accepts_insurance: bool = False
    accepting_patients: bool = True
    verification_status: str = "pending"

    @classmethod
    def from_model(cls, specialist) -> "ProviderCandidate":
        name = " ".join(p for p in (specialist.first_name, specialist.last_name) if p)
        return cls(
            id=specialist.id,
            user_id=specialist.user_id,
            name=name,
            specialties=tuple(specialist.specialties or ()),
            rating=specialist.average_rating,
            total_reviews=specialist.total_reviews or 0,
            languages=tuple(specialist.languages or ()),
            conditions=tuple(specialist.conditions_treated or ()),
            timezone=specialist.timezone,
            video_enabled=bool(specialist.video_consultation_enabled),
            in_person_enabled=bool(specialist.in_person_enabled),
            fee_min=specialist.consultation_fee_min,
            fee_max=specialist.consultation_fee_max,
            accepts_insurance=bool(specialist.accepts_insurance),
            accepting_patients=bool(specialist.is_accepting_patients),
            verification_status=specialist.verification_status,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "specialties": list(self.specialties),
            "rating": self.rating,
            "total_reviews": self.total_reviews,
            "languages": list(self.languages),
            "conditions": list(self.conditions),
            "timezone": self.timezone,
            "video_enabled": self.video_enabled,
            "in_person_enabled": self.in_person_enabled,
            "fee_min": self.fee_min,
            "fee_max": self.fee_max,
            "accepts_insurance": self.accepts_insurance,
            "accepting_patients": self.accepting_patients,
            "verification_status": self.verification_status,
        }


@dataclass(frozen=True)
class DirectoryQuery:
    """
    Immutable query shape against the provider directory.

    Specialty containment, verification and accepting-patients are always
    applied; every other field is an optional filter (None = not applied).
    """

    specialty: str
    verification_statuses: tuple = VERIFIED
    min_rating: Optional[float] = None
    language: Optional[str] = None
    condition: Optional[str] = None
    timezone: Optional[str] = None
    consultation_type: Optional[str] = None
    min_fee: Optional[float] = None
    max_fee: Optional[float] = None
    accepts_insurance: Optional[bool] = None
    limit: Optional[int] = None

    def with_changes(self, **changes) -> "DirectoryQuery":
        return replace(self, **changes)
