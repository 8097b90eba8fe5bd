from datetime import timedelta

import pytest

from carebridge import rate_limiter
from carebridge.domain.shifts import router as shifts_router
from carebridge.rate_limiter import check_rate_limit
from carebridge.shared.timeutils import utcnow


@pytest.fixture
def enqueued(monkeypatch):
    calls = []

    async def fake_enqueue(function_name, *args):
        calls.append((function_name, *args))
        return True

    monkeypatch.setattr(shifts_router, "enqueue_task", fake_enqueue)
    return calls


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


class TestSearchEndpoint:
    def test_relaxed_search_reports_from_and_to(self, client, factory):
        specialist = factory.specialist(average_rating=4.2)

        response = client.post("/search/specialists", json={"specialty": "Cardiology", "minRating": 4.5})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["constraint_level"] == "relaxed_rating"
        assert body["relaxations_applied"] == [{"field": "minRating", "from": 4.5, "to": 4.0}]
        assert body["source"] == "database"
        assert body["waitlist_suggested"] is False
        assert [s["id"] for s in body["specialists"]] == [specialist.id]
        assert body["specialists"][0]["score_breakdown"]["specialty"] == 40

    def test_exhausted_search_suggests_waitlist(self, client):
        response = client.post("/search/specialists", json={"specialty": "Neurology"})

        assert response.status_code == 200
        body = response.json()
        assert body["constraint_level"] == "none"
        assert body["waitlist_suggested"] is True
        assert body["total_count"] == 0

    def test_invalid_consultation_type_is_422(self, client):
        response = client.post("/search/specialists", json={"specialty": "Cardiology", "consultationType": "phone"})

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "validation_error"
        assert body["retryable"] is False

    def test_inverted_fee_range_is_422(self, client):
        response = client.post(
            "/search/specialists", json={"specialty": "Cardiology", "minFee": 300, "maxFee": 100}
        )

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"


class TestShiftEndpoints:
    def test_accept_then_conflict(self, client, factory):
        first = factory.specialist()
        second = factory.specialist()
        listing = factory.listing()

        response = client.post(
            "/shifts/sync", json={"shiftListingId": listing.id, "specialistId": first.id, "action": "accept"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Shift synchronized with availability calendar"
        assert body["availability_added"] is True
        assert body["calendar_synced"] is None
        assert body["blocked_time"] == {"starts_at": "2026-10-21T14:00:00", "ends_at": "2026-10-21T22:00:00"}

        conflict = client.post(
            "/shifts/sync", json={"shiftListingId": listing.id, "specialistId": second.id, "action": "accept"}
        )
        assert conflict.status_code == 409
        assert conflict.json() == {
            "success": False,
            "code": "listing_unavailable",
            "message": f"Shift listing {listing.id} is no longer open",
            "retryable": False,
        }

    def test_cancel_queues_waitlist_matching(self, client, factory, enqueued):
        specialist = factory.specialist()
        listing = factory.listing()
        payload = {"shiftListingId": listing.id, "specialistId": specialist.id}
        client.post("/shifts/sync", json={**payload, "action": "accept"})

        response = client.post("/shifts/sync", json={**payload, "action": "CANCEL"})

        assert response.status_code == 200
        assert response.json()["message"] == "Shift cancelled and availability restored"
        assert response.json()["warnings"] == []
        assert enqueued == [("match_waitlist_for_slot_task", specialist.id, "2026-10-21T14:00:00", 480)]

    def test_cancel_without_assignment_is_404(self, client, factory):
        specialist = factory.specialist()
        listing = factory.listing()

        response = client.post(
            "/shifts/sync", json={"shiftListingId": listing.id, "specialistId": specialist.id, "action": "cancel"}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_unknown_action_is_422(self, client):
        response = client.post("/shifts/sync", json={"shiftListingId": 1, "specialistId": 1, "action": "swap"})

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_apply_submits_application(self, client, factory):
        specialist = factory.specialist()
        listing = factory.listing()

        response = client.post(
            f"/shifts/{listing.id}/apply", json={"specialistId": specialist.id, "coverMessage": "Happy to help"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["auto_approved"] is False
        assert body["message"] == "Application submitted successfully"
        assert body["application"]["application_status"] == "pending"
        assert body["application"]["cover_message"] == "Happy to help"

    def test_apply_auto_approves_emergency_cover(self, client, factory):
        specialist = factory.specialist(average_rating=4.9)
        listing = factory.listing(urgency_level="emergency", auto_accept_high_rated=True)

        response = client.post(f"/shifts/{listing.id}/apply", json={"specialistId": specialist.id})

        body = response.json()
        assert body["auto_approved"] is True
        assert body["message"] == "Shift confirmed instantly!"
        assert body["shift_assignment_id"] is not None

    def test_duplicate_application_is_409(self, client, factory):
        specialist = factory.specialist()
        listing = factory.listing()
        client.post(f"/shifts/{listing.id}/apply", json={"specialistId": specialist.id})

        response = client.post(f"/shifts/{listing.id}/apply", json={"specialistId": specialist.id})

        assert response.status_code == 409
        assert response.json()["code"] == "already_applied"


class TestAvailabilityEndpoints:
    def test_window_overlap_is_409(self, client, factory):
        specialist = factory.specialist()
        url = f"/availability/{specialist.id}/windows"

        created = client.post(url, json={"dayOfWeek": 1, "startTime": "09:00", "endTime": "12:00"})
        overlap = client.post(url, json={"dayOfWeek": 1, "startTime": "11:30", "endTime": "13:00"})

        assert created.status_code == 200
        assert created.json()["start_time"] == "09:00:00"
        assert overlap.status_code == 409
        assert overlap.json()["code"] == "availability_overlap"

    def test_shift_windows_cannot_be_removed_directly(self, client, factory):
        specialist = factory.specialist()
        listing = factory.listing()
        client.post(
            "/shifts/sync", json={"shiftListingId": listing.id, "specialistId": specialist.id, "action": "accept"}
        )

        ledger = client.get(f"/availability/{specialist.id}").json()
        [window] = ledger["windows"]
        [block] = ledger["time_off"]
        assert window["shift_assignment_id"] == block["shift_assignment_id"] is not None

        response = client.delete(f"/availability/{specialist.id}/windows/{window['id']}")

        assert response.status_code == 409
        assert response.json()["code"] == "shift_managed"

    def test_next_slot_for_unknown_specialist_is_404(self, client):
        response = client.get("/availability/999/next-slot")

        assert response.status_code == 404


class TestWaitlistEndpoints:
    def test_entry_lifecycle(self, client, factory):
        patient = factory.user()

        created = client.post(
            "/waitlist", json={"patientId": patient.id, "specialty": "Cardiology", "urgencyScore": 80}
        )
        assert created.status_code == 200
        entry_id = created.json()["id"]
        assert created.json()["status"] == "active"

        assert client.get(f"/waitlist/{entry_id}").json()["urgency_score"] == 80
        assert client.post(f"/waitlist/{entry_id}/revert").json()["status"] == "active"
        assert client.delete(f"/waitlist/{entry_id}").json()["success"] is True

        missing = client.get(f"/waitlist/{entry_id}")
        assert missing.status_code == 404
        assert missing.json()["code"] == "not_found"

    def test_urgency_out_of_range_is_422(self, client, factory):
        patient = factory.user()

        response = client.post(
            "/waitlist", json={"patientId": patient.id, "specialty": "Cardiology", "urgencyScore": 150}
        )

        assert response.status_code == 422

    def test_slot_freed_matches_and_notifies(self, client, factory):
        specialist = factory.specialist()
        patient = factory.user()
        client.post("/waitlist", json={"patientId": patient.id, "specialty": "Cardiology"})
        starts_at = (utcnow() + timedelta(hours=2)).replace(minute=0, second=0, microsecond=0)
        factory.window_at(specialist, starts_at)

        response = client.post(
            "/waitlist/slot-freed", json={"specialistId": specialist.id, "startsAt": starts_at.isoformat()}
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "evaluated": 1,
            "matched": 1,
            "notified": 1,
            "expired": 0,
        }


def test_rate_limit_counts_in_memory():
    key = "test_rate_limit:127.0.0.1"

    results = [check_rate_limit(key, limit=2, window_seconds=60)[0] for _ in range(3)]

    assert results == [True, True, False]


def test_rate_limit_sweeps_closed_windows(monkeypatch):
    clock = [1_000_000]
    monkeypatch.setattr(rate_limiter.time, "time", lambda: clock[0])
    monkeypatch.setattr(rate_limiter, "memory_cache", {})
    monkeypatch.setattr(rate_limiter, "last_cleanup_time", 0)

    for i in range(500):
        check_rate_limit(f"specialist_search:10.0.{i // 256}.{i % 256}", limit=5, window_seconds=60)
    assert len(rate_limiter.memory_cache) == 500

    clock[0] += 3600
    check_rate_limit("specialist_search:192.0.2.1", limit=5, window_seconds=60)

    assert list(rate_limiter.memory_cache) == ["specialist_search:192.0.2.1"]
