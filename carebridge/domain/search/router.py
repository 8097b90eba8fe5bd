"""Search router - patient-facing specialist search"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...config import SEARCH_RATE_LIMIT_PER_MINUTE
from ...database import get_db
from ...rate_limiter import create_rate_limiter
from .schemas import RelaxationResponse, SearchRequest, SearchResponse, SpecialistResult
from .service import SearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["Search"])

rate_limit_search = create_rate_limiter(
    limit=SEARCH_RATE_LIMIT_PER_MINUTE, window_seconds=60, key_prefix="specialist_search"
)


def get_search_service(db: Session = Depends(get_db)) -> SearchService:
    """Dependency injection for SearchService"""
    return SearchService(db)


@router.post("/specialists", response_model=SearchResponse)
async def search_specialists(
    data: SearchRequest,
    service: SearchService = Depends(get_search_service),
    _: None = Depends(rate_limit_search),
):
    """
    Search specialists, relaxing filters until the result is non-empty.

    An exhausted search is not an error: it returns constraint_level "none"
    with waitlist_suggested set.
    """
    result = service.search(data)
    return SearchResponse(
        success=True,
        specialists=[SpecialistResult(**s.to_dict()) for s in result["specialists"]],
        constraint_level=result["constraint_level"],
        relaxations_applied=[
            RelaxationResponse(field=r.field, from_=r.from_value, to=r.to_value)
            for r in result["relaxations_applied"]
        ],
        message=result["message"],
        total_count=result["total_count"],
        waitlist_suggested=result["waitlist_suggested"],
        source=result["source"],
    )
