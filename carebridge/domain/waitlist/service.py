"""
Waitlist matcher - re-matches queued unmet requests against open or freed slots.

An entry is notified exactly once per transition into "matched"; entries that
are already matched keep their results up to date silently.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...config import (
    AVAILABILITY_HORIZON_DAYS,
    WAITLIST_MIN_MATCH_SCORE,
    WAITLIST_SLOTS_PER_SPECIALIST,
    WAITLIST_TOP_N,
    WAITLIST_URGENT_THRESHOLD,
)
from ...errors import NotFoundError, WaitlistValidationError
from ...models import User, WaitlistEntry
from ...services.outbox import queue_notification
from ...shared.timeutils import time_of_day_bucket, utcnow
from ..availability.service import AvailabilityService
from ..directory.repository import DirectoryRepository
from ..directory.schemas import ProviderCandidate
from ..matching.scoring import WAITLIST_WEIGHTS, MatchCriteria, MatchScore, ScoringContext, score
from .repository import WaitlistRepository
from .schemas import WaitlistCreate

logger = logging.getLogger(__name__)

# A preferred date admits slots this many days either side of it
PREFERRED_DATE_FLEX_DAYS = 3


def slot_admitted(entry: WaitlistEntry, specialist_id: int, slot_start: datetime) -> bool:
    """Whether the entry's hard preferences allow this slot"""
    if entry.specialist_id is not None and entry.specialist_id != specialist_id:
        return False
    if slot_start >= entry.expires_at:
        return False
    if entry.preferred_date is not None:
        if abs((slot_start.date() - entry.preferred_date).days) > PREFERRED_DATE_FLEX_DAYS:
            return False
    if entry.preferred_times:
        if time_of_day_bucket(slot_start) not in entry.preferred_times:
            return False
    return True


def offers_specialty(candidate: ProviderCandidate, specialty: str) -> bool:
    wanted = specialty.casefold()
    return any(str(s).casefold() == wanted for s in candidate.specialties)


def match_to_result(match: MatchScore) -> dict:
    return {
        "specialist_id": match.candidate_id,
        "slot_start": match.next_available.isoformat(),
        "score": match.score,
        "breakdown": dict(match.breakdown),
    }


def _result_key(result: dict):
    return (-result["score"], result["slot_start"], result["specialist_id"])


class WaitlistService:
    """Service layer for the waitlist matcher"""

    def __init__(
        self,
        db: Session,
        top_n: int = WAITLIST_TOP_N,
        min_match_score: float = WAITLIST_MIN_MATCH_SCORE,
        urgent_threshold: float = WAITLIST_URGENT_THRESHOLD,
    ):
        self.db = db
        self.repo = WaitlistRepository()
        self.directory = DirectoryRepository()
        self.availability = AvailabilityService(db)
        self.top_n = top_n
        self.min_match_score = min_match_score
        self.urgent_threshold = urgent_threshold

    # ------------------------------------------------------------------
    # Entry lifecycle
    # ------------------------------------------------------------------

    def get(self, entry_id: int) -> WaitlistEntry:
        entry = self.repo.get(self.db, entry_id)
        if not entry:
            raise NotFoundError(f"Waitlist entry {entry_id} not found")
        return entry

    def create_entry(self, data: WaitlistCreate, now: Optional[datetime] = None) -> WaitlistEntry:
        now = now or utcnow()
        if not self.db.query(User.id).filter(User.id == data.patientId).first():
            raise NotFoundError(f"Patient {data.patientId} not found")
        if data.specialistId is not None and not self.directory.get(self.db, data.specialistId):
            raise NotFoundError(f"Specialist {data.specialistId} not found")
        if data.preferredDate is not None and data.preferredDate < now.date():
            raise WaitlistValidationError("preferredDate must not be in the past")

        entry = WaitlistEntry(
            patient_id=data.patientId,
            specialty=data.specialty,
            language=data.language,
            specialist_id=data.specialistId,
            preferred_times=data.preferredTimes,
            preferred_date=data.preferredDate,
            urgency_score=data.urgencyScore,
            max_wait_days=data.maxWaitDays,
            status="active",
            match_results=[],
            created_at=now,
            expires_at=now + timedelta(days=data.maxWaitDays),
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"📋 Waitlist entry {entry.id} created for patient {data.patientId} ({data.specialty})")
        return entry

    def revert_to_active(self, entry_id: int) -> WaitlistEntry:
        """Return a matched entry to the queue, e.g. after the offered slot was taken"""
        entry = self.get(entry_id)
        if entry.status == "expired":
            raise WaitlistValidationError("Expired waitlist entries cannot be reactivated")
        entry.status = "active"
        entry.matched_at = None
        entry.notified_at = None
        entry.match_results = []
        entry.best_match_score = None
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"🔄 Waitlist entry {entry_id} returned to active")
        return entry

    def close_on_booking(self, entry_id: int) -> None:
        entry = self.get(entry_id)
        self.db.delete(entry)
        self.db.commit()
        logger.info(f"✅ Waitlist entry {entry_id} closed after booking")

    def expire(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        expired = self.repo.expire_overdue(self.db, now)
        self.db.commit()
        if expired:
            logger.info(f"⏰ Expired {expired} waitlist entr{'y' if expired == 1 else 'ies'}")
        return expired

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _score_slot(self, entry: WaitlistEntry, candidate: ProviderCandidate, slot_start: datetime,
                    now: datetime) -> MatchScore:
        criteria = MatchCriteria(specialties=(entry.specialty,), language=entry.language)
        context = ScoringContext(
            now=now,
            next_available=slot_start,
            urgent=(entry.urgency_score or 0) >= self.urgent_threshold,
        )
        return score(criteria, candidate, context, WAITLIST_WEIGHTS)

    def _apply_results(self, entry: WaitlistEntry, results: list[dict], now: datetime) -> Optional[int]:
        """
        Store the entry's top-N and move it to matched when the best score
        clears the threshold. Returns the queued notification id, if any.
        """
        results = sorted(results, key=_result_key)[: self.top_n]
        entry.match_results = results
        entry.best_match_score = results[0]["score"] if results else None

        if entry.status != "active" or not results or results[0]["score"] < self.min_match_score:
            return None

        if not self.repo.mark_matched(self.db, entry.id, now):
            return None

        best = results[0]
        entry.status = "matched"
        entry.matched_at = now
        entry.notified_at = now
        slot_start = datetime.fromisoformat(best["slot_start"])
        message = queue_notification(
            self.db,
            entry.patient_id,
            f"Good news! A {entry.specialty} appointment is available on "
            f"{slot_start:%A, %B %d at %H:%M}. Book now before it fills up!",
            {
                "type": "waitlist_match",
                "waitlist_entry_id": entry.id,
                "match_score": best["score"],
                "specialist_id": best["specialist_id"],
                "slot_start": best["slot_start"],
            },
            "waitlist_entry",
            entry.id,
            now=now,
        )
        logger.info(f"🎯 Waitlist entry {entry.id} matched (score={best['score']})")
        return message.id

    def match_freed_slot(
        self, specialist_id: int, starts_at: datetime, duration_minutes: int = 30,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Offer a newly freed interval to every waiting entry it suits.

        Only bookable slots inside [starts_at, starts_at + duration_minutes)
        are offered; an interval with no manual window behind it, or one
        covered by time off or appointments, notifies nobody.
        """
        now = now or utcnow()
        specialist = self.directory.get(self.db, specialist_id)
        if not specialist:
            raise NotFoundError(f"Specialist {specialist_id} not found")

        summary = {"evaluated": 0, "matched": 0, "notified": 0, "notification_ids": []}
        if starts_at <= now:
            logger.info(f"ℹ️ Freed slot at {starts_at} for specialist {specialist_id} already started, skipping")
            return summary
        if specialist.verification_status != "verified" or not specialist.is_accepting_patients:
            return summary

        open_starts = list(
            self.availability.open_slots(specialist_id, starts_at, starts_at + timedelta(minutes=duration_minutes))
        )
        if not open_starts:
            logger.info(f"ℹ️ No bookable slots in freed interval {starts_at} for specialist {specialist_id}")
            return summary

        candidate = ProviderCandidate.from_model(specialist)
        for entry in self.repo.get_open_entries(self.db, ("active", "matched"), now):
            if not offers_specialty(candidate, entry.specialty):
                continue
            admitted = [s for s in open_starts if slot_admitted(entry, specialist_id, s)]
            if not admitted:
                continue
            summary["evaluated"] += 1

            merged = {
                (r["specialist_id"], r["slot_start"]): r
                for r in (entry.match_results or [])
                if datetime.fromisoformat(r["slot_start"]) > now
            }
            for slot_start in admitted[:WAITLIST_SLOTS_PER_SPECIALIST]:
                new = match_to_result(self._score_slot(entry, candidate, slot_start, now))
                merged[(new["specialist_id"], new["slot_start"])] = new

            was_active = entry.status == "active"
            message_id = self._apply_results(entry, list(merged.values()), now)
            if message_id is not None:
                summary["notification_ids"].append(message_id)
                summary["notified"] += 1
            if was_active and entry.status == "matched":
                summary["matched"] += 1

        self.db.commit()
        logger.info(
            f"🔁 Freed slot {starts_at} ({duration_minutes} min) for specialist {specialist_id}: "
            f"{summary['evaluated']} evaluated, {summary['matched']} matched"
        )
        return summary

    def _open_slots_for(self, entry: WaitlistEntry, candidates: Iterable[ProviderCandidate],
                        now: datetime) -> list[dict]:
        horizon = min(entry.expires_at, now + timedelta(days=AVAILABILITY_HORIZON_DAYS))
        results = []
        for candidate in candidates:
            if entry.specialist_id is not None and candidate.id != entry.specialist_id:
                continue
            taken = 0
            for slot_start in self.availability.open_slots(candidate.id, now + timedelta(microseconds=1), horizon):
                if not slot_admitted(entry, candidate.id, slot_start):
                    continue
                results.append(match_to_result(self._score_slot(entry, candidate, slot_start, now)))
                taken += 1
                if taken >= WAITLIST_SLOTS_PER_SPECIALIST:
                    break
        return results

    def run(self, now: Optional[datetime] = None) -> dict:
        """Expire overdue entries, then score current open slots for every active entry"""
        now = now or utcnow()
        expired = self.expire(now)
        summary = {"evaluated": 0, "matched": 0, "notified": 0, "expired": expired, "notification_ids": []}

        candidates_by_specialty: dict[str, list[ProviderCandidate]] = {}
        for entry in self.repo.get_open_entries(self.db, ("active",), now):
            key = entry.specialty.casefold()
            if key not in candidates_by_specialty:
                candidates_by_specialty[key] = self.directory.find_bookable_for_specialty(self.db, entry.specialty)

            summary["evaluated"] += 1
            results = self._open_slots_for(entry, candidates_by_specialty[key], now)
            message_id = self._apply_results(entry, results, now)
            if message_id is not None:
                summary["matched"] += 1
                summary["notified"] += 1
                summary["notification_ids"].append(message_id)

        self.db.commit()
        logger.info(
            f"📋 Waitlist run: {summary['evaluated']} evaluated, {summary['matched']} matched, "
            f"{expired} expired"
        )
        return summary
