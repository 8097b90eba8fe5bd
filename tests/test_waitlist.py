from datetime import date, datetime, timedelta

import pytest

from carebridge.domain.waitlist.schemas import WaitlistCreate
from carebridge.domain.waitlist.service import WaitlistService, slot_admitted
from carebridge.errors import NotFoundError, WaitlistValidationError
from carebridge.models import OutboxMessage, WaitlistEntry

NOW = datetime(2026, 10, 19, 8, 0, 0)
# Same morning as NOW; scores 40 specialty + 12 rating + 20 availability
SOON = datetime(2026, 10, 19, 10, 0)
# Thursday of the following week; too far out to score for availability
LATER = datetime(2026, 10, 29, 10, 0)


def notifications(db):
    return db.query(OutboxMessage).filter(OutboxMessage.kind == "notification").order_by(OutboxMessage.id).all()


class TestEntries:
    def test_create_entry_sets_expiry(self, db_session, factory):
        patient = factory.user()

        entry = WaitlistService(db_session).create_entry(
            WaitlistCreate(patientId=patient.id, specialty=" Cardiology ", maxWaitDays=14, preferredTimes=["Morning"]),
            now=NOW,
        )

        assert entry.status == "active"
        assert entry.specialty == "Cardiology"
        assert entry.preferred_times == ["morning"]
        assert entry.expires_at == NOW + timedelta(days=14)

    def test_unknown_patient_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            WaitlistService(db_session).create_entry(WaitlistCreate(patientId=42, specialty="Cardiology"), now=NOW)

    def test_unknown_preferred_specialist_is_not_found(self, db_session, factory):
        patient = factory.user()

        with pytest.raises(NotFoundError):
            WaitlistService(db_session).create_entry(
                WaitlistCreate(patientId=patient.id, specialty="Cardiology", specialistId=404), now=NOW
            )

    def test_past_preferred_date_is_rejected(self, db_session, factory):
        patient = factory.user()

        with pytest.raises(WaitlistValidationError):
            WaitlistService(db_session).create_entry(
                WaitlistCreate(patientId=patient.id, specialty="Cardiology", preferredDate=date(2026, 10, 1)),
                now=NOW,
            )

    def test_schema_rejects_unknown_time_bucket(self):
        with pytest.raises(ValueError):
            WaitlistCreate(patientId=1, specialty="Cardiology", preferredTimes=["midnight"])

    def test_close_on_booking_removes_entry(self, db_session, factory):
        entry = factory.waitlist_entry()
        service = WaitlistService(db_session)

        service.close_on_booking(entry.id)

        with pytest.raises(NotFoundError):
            service.get(entry.id)

    def test_expired_entry_cannot_be_reverted(self, db_session, factory):
        entry = factory.waitlist_entry(status="expired")

        with pytest.raises(WaitlistValidationError):
            WaitlistService(db_session).revert_to_active(entry.id)


class TestFreedSlot:
    def test_match_notifies_exactly_once(self, db_session, factory):
        specialist = factory.specialist()
        factory.window(specialist)
        entry = factory.waitlist_entry()
        service = WaitlistService(db_session)

        first = service.match_freed_slot(specialist.id, SOON, now=NOW)
        second = service.match_freed_slot(specialist.id, SOON + timedelta(minutes=30), now=NOW)

        assert first["matched"] == 1
        assert first["notified"] == 1
        assert second["evaluated"] == 1
        assert second["notified"] == 0

        entry = db_session.get(WaitlistEntry, entry.id)
        assert entry.status == "matched"
        assert entry.matched_at == NOW
        assert entry.best_match_score == 72
        assert [r["slot_start"] for r in entry.match_results] == [
            "2026-10-19T10:00:00",
            "2026-10-19T10:30:00",
        ]

        [message] = notifications(db_session)
        assert message.user_id == entry.patient_id
        assert message.payload["message"].startswith("Good news! A Cardiology appointment is available on Monday")
        assert message.payload["metadata"] == {
            "type": "waitlist_match",
            "waitlist_entry_id": entry.id,
            "match_score": 72,
            "specialist_id": specialist.id,
            "slot_start": "2026-10-19T10:00:00",
        }

    def test_interval_without_bookable_slots_notifies_nobody(self, db_session, factory):
        unscheduled = factory.specialist()
        booked = factory.specialist()
        factory.window(booked)
        factory.appointment(booked, SOON)
        away = factory.specialist()
        factory.window(away)
        factory.time_off(away, datetime(2026, 10, 19, 9, 0), datetime(2026, 10, 19, 12, 0))
        entry = factory.waitlist_entry()
        service = WaitlistService(db_session)

        for specialist in (unscheduled, booked, away):
            summary = service.match_freed_slot(specialist.id, SOON, now=NOW)
            assert summary == {"evaluated": 0, "matched": 0, "notified": 0, "notification_ids": []}

        entry = db_session.get(WaitlistEntry, entry.id)
        assert entry.status == "active"
        assert entry.match_results == []
        assert notifications(db_session) == []

    def test_long_interval_offers_only_its_open_slots(self, db_session, factory):
        specialist = factory.specialist()
        factory.window(specialist)
        factory.appointment(specialist, datetime(2026, 10, 19, 10, 30))
        entry = factory.waitlist_entry()

        # A cancelled eight-hour shift from 09:30; the window closes at 12:00
        WaitlistService(db_session).match_freed_slot(
            specialist.id, datetime(2026, 10, 19, 9, 30), 480, now=NOW
        )

        entry = db_session.get(WaitlistEntry, entry.id)
        assert [r["slot_start"] for r in entry.match_results] == [
            "2026-10-19T09:30:00",
            "2026-10-19T10:00:00",
            "2026-10-19T11:00:00",
        ]

    def test_revert_allows_a_second_notification(self, db_session, factory):
        specialist = factory.specialist()
        factory.window(specialist)
        entry = factory.waitlist_entry()
        service = WaitlistService(db_session)
        service.match_freed_slot(specialist.id, SOON, now=NOW)

        reverted = service.revert_to_active(entry.id)
        assert reverted.status == "active"
        assert reverted.match_results == []
        assert reverted.notified_at is None

        summary = service.match_freed_slot(specialist.id, SOON + timedelta(hours=1), now=NOW)

        assert summary["notified"] == 1
        assert len(notifications(db_session)) == 2

    def test_low_score_keeps_entry_active_with_results(self, db_session, factory):
        specialist = factory.specialist()
        factory.window(specialist, day_of_week=4)
        entry = factory.waitlist_entry()

        summary = WaitlistService(db_session).match_freed_slot(specialist.id, LATER, now=NOW)

        entry = db_session.get(WaitlistEntry, entry.id)
        assert summary == {"evaluated": 1, "matched": 0, "notified": 0, "notification_ids": []}
        assert entry.status == "active"
        assert entry.best_match_score == 52
        assert notifications(db_session) == []

    def test_urgent_and_language_raise_the_score(self, db_session, factory):
        specialist = factory.specialist(languages=["English", "Spanish"])
        factory.window(specialist, day_of_week=4)
        entry = factory.waitlist_entry(urgency_score=85, language="spanish")

        WaitlistService(db_session).match_freed_slot(specialist.id, LATER, now=NOW)

        entry = db_session.get(WaitlistEntry, entry.id)
        assert entry.match_results[0]["breakdown"]["urgency"] == 15
        assert entry.match_results[0]["breakdown"]["language"] == 10
        assert entry.best_match_score == 77
        assert entry.status == "matched"

    def test_preferences_filter_slots(self, db_session, factory):
        specialist = factory.specialist()
        factory.window(specialist)
        other = factory.specialist()
        factory.waitlist_entry(preferred_times=["evening"])
        factory.waitlist_entry(specialist_id=other.id)
        factory.waitlist_entry(preferred_date=date(2026, 10, 30))
        factory.waitlist_entry(specialty="Dermatology")

        summary = WaitlistService(db_session).match_freed_slot(specialist.id, SOON, now=NOW)

        assert summary["evaluated"] == 0

    def test_preferred_date_admits_nearby_days(self, db_session, factory):
        entry = factory.waitlist_entry(preferred_date=date(2026, 10, 21))

        assert slot_admitted(entry, 1, datetime(2026, 10, 19, 10, 0))
        assert slot_admitted(entry, 1, datetime(2026, 10, 24, 10, 0))
        assert not slot_admitted(entry, 1, datetime(2026, 10, 25, 10, 0))

    def test_slot_after_expiry_is_not_offered(self, db_session, factory):
        specialist = factory.specialist()
        factory.window(specialist, day_of_week=3)
        factory.waitlist_entry(max_wait_days=1)

        summary = WaitlistService(db_session).match_freed_slot(
            specialist.id, datetime(2026, 10, 21, 10, 0), now=NOW
        )

        assert summary["evaluated"] == 0

    def test_past_slot_and_unverified_specialist_are_ignored(self, db_session, factory):
        verified = factory.specialist()
        pending = factory.specialist(verification_status="pending")
        factory.window(verified)
        factory.window(pending)
        factory.waitlist_entry()
        service = WaitlistService(db_session)

        assert service.match_freed_slot(verified.id, NOW - timedelta(hours=1), now=NOW)["evaluated"] == 0
        assert service.match_freed_slot(pending.id, SOON, now=NOW)["evaluated"] == 0

    def test_unknown_specialist_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            WaitlistService(db_session).match_freed_slot(999, SOON, now=NOW)

    def test_concurrent_matchers_notify_once(self, two_sessions):
        session_a, session_b, factory = two_sessions
        specialist = factory.specialist()
        factory.window(specialist)
        entry = factory.waitlist_entry()

        # Session B holds the entry as active while A matches it
        assert session_b.get(WaitlistEntry, entry.id).status == "active"
        WaitlistService(session_a).match_freed_slot(specialist.id, SOON, now=NOW)
        summary = WaitlistService(session_b).match_freed_slot(specialist.id, SOON + timedelta(minutes=30), now=NOW)

        assert summary["notified"] == 0
        session_a.expire_all()
        assert session_a.get(WaitlistEntry, entry.id).status == "matched"
        assert len(notifications(session_a)) == 1


class TestRun:
    def test_run_matches_against_open_slots(self, db_session, factory):
        first = factory.specialist()
        second = factory.specialist(average_rating=3.0)
        factory.window(first)
        factory.window(second)
        entry = factory.waitlist_entry()

        summary = WaitlistService(db_session).run(now=NOW)

        assert summary["evaluated"] == 1
        assert summary["matched"] == 1
        assert summary["expired"] == 0
        entry = db_session.get(WaitlistEntry, entry.id)
        assert entry.status == "matched"
        assert len(entry.match_results) == 5
        assert [r["specialist_id"] for r in entry.match_results[:3]] == [first.id] * 3
        assert entry.match_results[0]["slot_start"] == "2026-10-19T09:00:00"
        assert len(notifications(db_session)) == 1

    def test_run_expires_overdue_entries(self, db_session, factory):
        factory.specialist()
        overdue = factory.waitlist_entry(created_at=NOW - timedelta(days=31))
        matched = factory.waitlist_entry(created_at=NOW - timedelta(days=40), status="matched")

        summary = WaitlistService(db_session).run(now=NOW)

        assert summary["expired"] == 2
        assert summary["evaluated"] == 0
        assert db_session.get(WaitlistEntry, overdue.id).status == "expired"
        assert db_session.get(WaitlistEntry, matched.id).status == "expired"

    def test_run_without_slots_keeps_entry_waiting(self, db_session, factory):
        factory.specialist()
        entry = factory.waitlist_entry()

        summary = WaitlistService(db_session).run(now=NOW)

        assert summary["matched"] == 0
        entry = db_session.get(WaitlistEntry, entry.id)
        assert entry.status == "active"
        assert entry.match_results == []
        assert entry.best_match_score is None
