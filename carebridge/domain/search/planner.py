"""
Constraint relaxation planner.

Turns a search request into a non-empty candidate list by walking a fixed
ladder of query transforms, loosest last:

    exact -> relaxed_rating -> max_relaxation -> none

Each rung derives a new immutable DirectoryQuery from the base query; a
later rung never reintroduces or tightens a filter dropped by an earlier one.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...config import MAX_RELAXATION_LIMIT, RATING_RELAXATION_FLOOR, RATING_RELAXATION_STEP
from ...errors import SearchValidationError
from ..directory.repository import DirectoryRepository
from ..directory.schemas import VERIFIED, VERIFIED_OR_PENDING, DirectoryQuery
from .schemas import (
    LEVEL_EXACT,
    LEVEL_MAX_RELAXATION,
    LEVEL_NONE,
    LEVEL_RELAXED_RATING,
    ConstraintRelaxationResult,
    Relaxation,
    SearchRequest,
)

logger = logging.getLogger(__name__)

# DirectoryQuery field -> request-facing name reported in relaxations_applied
RELAXABLE_FIELDS = (
    ("min_rating", "minRating"),
    ("language", "language"),
    ("condition", "condition"),
    ("timezone", "timeZone"),
    ("consultation_type", "consultationType"),
    ("min_fee", "minFee"),
    ("max_fee", "maxFee"),
    ("accepts_insurance", "acceptsInsurance"),
)


def validate_request(request: SearchRequest) -> None:
    """Reject malformed requests before any relaxation is attempted"""
    if not request.specialty or not request.specialty.strip():
        raise SearchValidationError("specialty is required")
    if request.minFee is not None and request.maxFee is not None and request.minFee > request.maxFee:
        raise SearchValidationError("minFee must not exceed maxFee")


def build_base_query(request: SearchRequest) -> DirectoryQuery:
    return DirectoryQuery(
        specialty=request.specialty.strip(),
        verification_statuses=VERIFIED if request.verifiedOnly else VERIFIED_OR_PENDING,
        min_rating=request.minRating,
        language=request.language,
        condition=request.condition,
        timezone=request.timeZone,
        consultation_type=request.consultationType,
        min_fee=request.minFee,
        max_fee=request.maxFee,
        accepts_insurance=request.acceptsInsurance or None,
    )


def describe_relaxations(base: DirectoryQuery, relaxed: DirectoryQuery) -> tuple:
    """Every field that differs from the original request, in ladder order"""
    relaxations = []
    for attr, name in RELAXABLE_FIELDS:
        before = getattr(base, attr)
        after = getattr(relaxed, attr)
        if before != after:
            relaxations.append(Relaxation(field=name, from_value=before, to_value=after))
    return tuple(relaxations)


class ConstraintRelaxationPlanner:
    """Walks the relaxation ladder against the provider directory"""

    def __init__(
        self,
        db: Session,
        rating_step: float = RATING_RELAXATION_STEP,
        rating_floor: float = RATING_RELAXATION_FLOOR,
        max_relaxation_limit: int = MAX_RELAXATION_LIMIT,
    ):
        self.db = db
        self.repo = DirectoryRepository()
        self.rating_step = rating_step
        self.rating_floor = rating_floor
        self.max_relaxation_limit = max_relaxation_limit

    # ------------------------------------------------------------------
    # Ladder transforms: (base query, find) -> relaxed query, or None to skip
    # ------------------------------------------------------------------

    def _exact(self, base: DirectoryQuery, find: Callable) -> Optional[DirectoryQuery]:
        return base

    def _relaxed_rating(self, base: DirectoryQuery, find: Callable) -> Optional[DirectoryQuery]:
        if base.min_rating is None or base.min_rating <= self.rating_floor:
            return None
        # Only worth relaxing when rating is what empties the result
        if not find(base.with_changes(min_rating=None)):
            return None
        relaxed = max(self.rating_floor, base.min_rating - self.rating_step)
        return base.with_changes(min_rating=relaxed)

    def _max_relaxation(self, base: DirectoryQuery, find: Callable) -> Optional[DirectoryQuery]:
        return DirectoryQuery(
            specialty=base.specialty,
            verification_statuses=base.verification_statuses,
            limit=self.max_relaxation_limit,
        )

    def ladder(self) -> list[tuple[str, Callable]]:
        return [
            (LEVEL_EXACT, self._exact),
            (LEVEL_RELAXED_RATING, self._relaxed_rating),
            (LEVEL_MAX_RELAXATION, self._max_relaxation),
        ]

    def _finder(self) -> Callable:
        """Directory lookup memoised for one search call"""
        seen = {}

        def find(query: DirectoryQuery):
            if query not in seen:
                seen[query] = self.repo.find(self.db, query)
            return seen[query]

        return find

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(self, request: SearchRequest) -> ConstraintRelaxationResult:
        """
        Return the first non-empty ladder level for the request.

        Raises:
            SearchValidationError: Missing specialty or inverted fee range
            DirectoryUnavailableError: Provider directory could not be queried
        """
        validate_request(request)
        base = build_base_query(request)
        find = self._finder()

        for level, transform in self.ladder():
            query = transform(base, find)
            if query is None:
                logger.debug(f"Skipping relaxation level {level} for '{base.specialty}'")
                continue

            pool = find(query)
            if not pool:
                continue

            page = pool[: query.limit] if query.limit else pool
            relaxations = describe_relaxations(base, query)
            if level != LEVEL_EXACT:
                logger.info(
                    f"🔄 Search for '{base.specialty}' relaxed to {level}: "
                    f"{', '.join(r.field for r in relaxations) or 'no filter changes'}"
                )
            return ConstraintRelaxationResult(
                level=level,
                relaxations_applied=relaxations,
                candidates=tuple(page),
                total_count=len(page),
                waitlist_suggested=False,
            )

        logger.info(f"⚠️ No specialists for '{base.specialty}' at any relaxation level")
        return ConstraintRelaxationResult(
            level=LEVEL_NONE,
            relaxations_applied=describe_relaxations(base, self._max_relaxation(base, find)),
            candidates=(),
            total_count=0,
            waitlist_suggested=True,
        )

    def pool_sizes(self, request: SearchRequest) -> dict[str, int]:
        """
        Uncapped candidate pool per applicable level. Pools never shrink
        from one level to the next. Skipped levels are omitted.
        """
        validate_request(request)
        base = build_base_query(request)
        find = self._finder()

        sizes = {}
        for level, transform in self.ladder():
            query = transform(base, find)
            if query is not None:
                sizes[level] = len(find(query))
        return sizes
