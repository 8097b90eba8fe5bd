"""Provider directory repository - read-only queries over specialist profiles"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...errors import DirectoryUnavailableError
from ...models import Specialist
from .schemas import VERIFIED, DirectoryQuery, ProviderCandidate

logger = logging.getLogger(__name__)


def _contains(values, wanted: str) -> bool:
    wanted = wanted.casefold()
    return any(str(v).casefold() == wanted for v in (values or ()))


class DirectoryRepository:
    """Repository for provider directory reads"""

    @staticmethod
    def find(db: Session, query: DirectoryQuery) -> list[ProviderCandidate]:
        """
        Run a directory query. Scalar filters go to SQL; list-valued
        filters (specialty, language, condition) are matched in Python so the
        query works the same on SQLite and Postgres JSON columns.

        Returns the full matching pool ordered by id; ``query.limit`` is
        applied by the caller.
        """
        q = db.query(Specialist).filter(
            Specialist.is_accepting_patients.is_(True),
            Specialist.verification_status.in_(query.verification_statuses),
        )

        if query.min_rating is not None:
            q = q.filter(Specialist.average_rating >= query.min_rating)

        if query.accepts_insurance:
            q = q.filter(Specialist.accepts_insurance.is_(True))

        if query.min_fee is not None:
            q = q.filter(Specialist.consultation_fee_min >= query.min_fee)

        if query.max_fee is not None:
            q = q.filter(Specialist.consultation_fee_max <= query.max_fee)

        if query.timezone:
            q = q.filter(Specialist.timezone == query.timezone.split(" ")[0])

        if query.consultation_type == "video":
            q = q.filter(Specialist.video_consultation_enabled.is_(True))
        elif query.consultation_type == "in-person":
            q = q.filter(Specialist.in_person_enabled.is_(True))

        try:
            rows = q.order_by(Specialist.id.asc()).all()
        except SQLAlchemyError as e:
            logger.error(f"❌ Provider directory query failed: {e}")
            raise DirectoryUnavailableError("Provider directory is unavailable, please retry") from e

        candidates = []
        for row in rows:
            if not _contains(row.specialties, query.specialty):
                continue
            if query.language and not _contains(row.languages, query.language):
                continue
            if query.condition and not _contains(row.conditions_treated, query.condition):
                continue
            candidates.append(ProviderCandidate.from_model(row))
        return candidates

    @staticmethod
    def get_by_ids(
        db: Session, specialist_ids: list[int], verification_statuses: tuple = VERIFIED
    ) -> list[ProviderCandidate]:
        """Rehydrate candidates by id, dropping any that are no longer bookable"""
        if not specialist_ids:
            return []
        try:
            rows = (
                db.query(Specialist)
                .filter(
                    Specialist.id.in_(specialist_ids),
                    Specialist.is_accepting_patients.is_(True),
                    Specialist.verification_status.in_(verification_statuses),
                )
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"❌ Provider directory lookup failed: {e}")
            raise DirectoryUnavailableError("Provider directory is unavailable, please retry") from e
        by_id = {row.id: ProviderCandidate.from_model(row) for row in rows}
        return [by_id[i] for i in specialist_ids if i in by_id]

    @staticmethod
    def get(db: Session, specialist_id: int) -> Optional[Specialist]:
        return db.query(Specialist).filter(Specialist.id == specialist_id).first()

    @staticmethod
    def find_bookable_for_specialty(db: Session, specialty: str) -> list[ProviderCandidate]:
        """Verified, accepting specialists offering a specialty (waitlist matching)"""
        return DirectoryRepository.find(db, DirectoryQuery(specialty=specialty))
