"""Search service - cache lookup, constraint relaxation, scoring and ranking"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...config import SEARCH_CACHE_ENABLED, SEARCH_CACHE_TTL_HOURS
from ...shared.timeutils import utcnow
from ..availability.service import AvailabilityService
from ..directory.repository import DirectoryRepository
from ..directory.schemas import VERIFIED, VERIFIED_OR_PENDING
from ..matching.scoring import SEARCH_WEIGHTS, MatchCriteria, ScoringContext, rank, score
from .planner import ConstraintRelaxationPlanner, validate_request
from .repository import SearchCacheRepository, generate_search_key
from .schemas import (
    LEVEL_EXACT,
    LEVEL_MAX_RELAXATION,
    LEVEL_NONE,
    LEVEL_RELAXED_RATING,
    ConstraintRelaxationResult,
    RankedSpecialist,
    Relaxation,
    SearchRequest,
)

logger = logging.getLogger(__name__)

LEVEL_MESSAGES = {
    LEVEL_EXACT: None,
    LEVEL_RELAXED_RATING: "No exact matches found. Showing specialists with a slightly lower rating.",
    LEVEL_MAX_RELAXATION: "No close matches found. Showing specialists for this specialty with other filters removed.",
    LEVEL_NONE: "No specialists are available for this specialty right now. Join the waitlist to be notified.",
}


class SearchService:
    """Service layer for specialist search"""

    def __init__(self, db: Session, cache_enabled: bool = SEARCH_CACHE_ENABLED):
        self.db = db
        self.planner = ConstraintRelaxationPlanner(db)
        self.availability = AvailabilityService(db)
        self.directory = DirectoryRepository()
        self.cache = SearchCacheRepository()
        self.cache_enabled = cache_enabled

    def _cached_result(
        self, search_key: str, request: SearchRequest, now: datetime
    ) -> Optional[ConstraintRelaxationResult]:
        entry = self.cache.get_valid(self.db, search_key, now)
        if entry is None:
            return None

        specialist_ids = list(entry.specialist_ids or [])
        statuses = VERIFIED if request.verifiedOnly else VERIFIED_OR_PENDING
        candidates = self.directory.get_by_ids(self.db, specialist_ids, statuses)
        if len(candidates) != len(specialist_ids):
            # A cached provider stopped accepting patients or lost verification
            logger.info(f"🔄 Search cache entry {search_key} is stale, recomputing")
            return None

        self.cache.record_hit(self.db, entry.id)
        logger.debug(f"✅ Search cache HIT: {search_key}")
        relaxations = tuple(
            Relaxation(field=r["field"], from_value=r.get("from"), to_value=r.get("to"))
            for r in (entry.relaxations_applied or [])
        )
        return ConstraintRelaxationResult(
            level=entry.constraint_level,
            relaxations_applied=relaxations,
            candidates=tuple(candidates),
            total_count=len(candidates),
            waitlist_suggested=entry.constraint_level == LEVEL_NONE,
        )

    def _store(self, search_key: str, filters: dict, result: ConstraintRelaxationResult, now: datetime):
        self.cache.store(
            self.db,
            search_key,
            filters,
            result.level,
            [r.to_dict() for r in result.relaxations_applied],
            result.candidate_ids,
            now,
            SEARCH_CACHE_TTL_HOURS,
        )

    def rank_candidates(self, request: SearchRequest, candidates, now: datetime) -> list[RankedSpecialist]:
        """Score every candidate against the request and order best first"""
        criteria = MatchCriteria(specialties=(request.specialty.strip(),), language=request.language)
        by_id = {c.id: c for c in candidates}

        matches = []
        for candidate in candidates:
            next_available = self.availability.next_open_slot(candidate.id, now)
            context = ScoringContext(now=now, next_available=next_available)
            matches.append(score(criteria, candidate, context, SEARCH_WEIGHTS))

        return [
            RankedSpecialist(
                candidate=by_id[m.candidate_id],
                match_score=m.score,
                score_breakdown=m.breakdown,
                next_available=m.next_available,
            )
            for m in rank(matches)
        ]

    def search(self, request: SearchRequest, now: Optional[datetime] = None) -> dict:
        """
        Run a specialist search.

        Cache hits reuse the relaxation level and candidate ids; scores and
        next-available slots are always computed fresh.
        """
        validate_request(request)
        now = now or utcnow()
        source = "database"
        result = None

        filters = request.cache_filters()
        search_key = generate_search_key(filters)

        if self.cache_enabled:
            result = self._cached_result(search_key, request, now)
            if result is not None:
                source = "cache"

        if result is None:
            result = self.planner.search(request)
            if self.cache_enabled:
                self._store(search_key, filters, result, now)

        ranked = self.rank_candidates(request, result.candidates, now)
        logger.info(
            f"🔍 Search '{request.specialty}': level={result.level}, "
            f"results={len(ranked)}, source={source}"
        )

        return {
            "success": True,
            "specialists": ranked,
            "constraint_level": result.level,
            "relaxations_applied": list(result.relaxations_applied),
            "message": LEVEL_MESSAGES.get(result.level),
            "total_count": len(ranked),
            "waitlist_suggested": result.waitlist_suggested,
            "source": source,
        }
