from datetime import datetime, timedelta

from carebridge.domain.search.repository import SearchCacheRepository, generate_search_key
from carebridge.domain.search.schemas import SearchRequest
from carebridge.domain.search.service import SearchService
from carebridge.models import SearchCacheEntry

NOW = datetime(2026, 10, 19, 8, 0, 0)


def cache_entry(db):
    db.expire_all()
    return db.query(SearchCacheEntry).one()


def test_repeat_search_is_served_from_cache(db_session, factory):
    factory.specialist(average_rating=4.2)
    service = SearchService(db_session)
    request = SearchRequest(specialty="Cardiology", minRating=4.5)

    first = service.search(request, now=NOW)
    second = service.search(request, now=NOW + timedelta(minutes=5))
    third = service.search(request, now=NOW + timedelta(minutes=10))

    assert first["source"] == "database"
    assert second["source"] == third["source"] == "cache"
    assert second["constraint_level"] == first["constraint_level"] == "relaxed_rating"
    assert [r.to_dict() for r in second["relaxations_applied"]] == [
        {"field": "minRating", "from": 4.5, "to": 4.0}
    ]
    entry = cache_entry(db_session)
    assert entry.hit_count == 2
    assert entry.result_count == 1


def test_equivalent_requests_share_a_key(db_session, factory):
    factory.specialist()
    service = SearchService(db_session)

    service.search(SearchRequest(specialty="Cardiology", language="English"), now=NOW)
    result = service.search(SearchRequest(specialty=" cardiology", language="english "), now=NOW)

    assert result["source"] == "cache"
    assert db_session.query(SearchCacheEntry).count() == 1


def test_search_key_is_order_independent():
    assert generate_search_key({"a": 1, "b": None}) == generate_search_key({"b": None, "a": 1})
    assert generate_search_key({"a": 1}) != generate_search_key({"a": 2})


def test_expired_entry_is_recomputed_and_overwritten(db_session, factory):
    factory.specialist()
    service = SearchService(db_session)
    request = SearchRequest(specialty="Cardiology")
    service.search(request, now=NOW)

    later = NOW + timedelta(hours=5)
    result = service.search(request, now=later)

    assert result["source"] == "database"
    entry = cache_entry(db_session)
    assert entry.cached_at == later
    assert entry.expires_at == later + timedelta(hours=4)
    assert entry.hit_count == 0


def test_scores_are_fresh_on_cache_hit(db_session, factory):
    specialist = factory.specialist()
    service = SearchService(db_session)
    request = SearchRequest(specialty="Cardiology")
    first = service.search(request, now=NOW)
    assert first["specialists"][0].next_available is None

    factory.window(specialist)
    second = service.search(request, now=NOW)

    assert second["source"] == "cache"
    ranked = second["specialists"][0]
    assert ranked.next_available == datetime(2026, 10, 19, 9, 0)
    assert ranked.score_breakdown["availability"] == 20
    assert ranked.match_score > first["specialists"][0].match_score


def test_exhausted_search_is_cached_with_waitlist_suggestion(db_session):
    service = SearchService(db_session)
    request = SearchRequest(specialty="Neurology")

    first = service.search(request, now=NOW)
    second = service.search(request, now=NOW)

    assert first["constraint_level"] == second["constraint_level"] == "none"
    assert second["source"] == "cache"
    assert second["waitlist_suggested"] is True
    assert second["message"].startswith("No specialists are available")
    assert second["specialists"] == []


def test_ineligible_cached_provider_forces_recompute(db_session, factory):
    leaving = factory.specialist(average_rating=4.2)
    staying = factory.specialist(average_rating=4.1)
    service = SearchService(db_session)
    request = SearchRequest(specialty="Cardiology", minRating=4.5)
    service.search(request, now=NOW)

    leaving.verification_status = "rejected"
    leaving.is_accepting_patients = False
    db_session.commit()
    later = NOW + timedelta(minutes=5)
    result = service.search(request, now=later)

    assert result["source"] == "database"
    assert [s.candidate.id for s in result["specialists"]] == [staying.id]
    entry = cache_entry(db_session)
    assert entry.specialist_ids == [staying.id]
    assert entry.cached_at == later


def test_pending_provider_served_from_cache_when_not_verified_only(db_session, factory):
    pending = factory.specialist(verification_status="pending")
    service = SearchService(db_session)
    request = SearchRequest(specialty="Cardiology", verifiedOnly=False)
    service.search(request, now=NOW)

    result = service.search(request, now=NOW)

    assert result["source"] == "cache"
    assert [s.candidate.id for s in result["specialists"]] == [pending.id]


def test_disabled_cache_never_stores(db_session, factory):
    factory.specialist()
    service = SearchService(db_session, cache_enabled=False)

    result = service.search(SearchRequest(specialty="Cardiology"), now=NOW)

    assert result["source"] == "database"
    assert db_session.query(SearchCacheEntry).count() == 0


def test_ranking_prefers_sooner_availability(db_session, factory):
    no_slots = factory.specialist(average_rating=4.0)
    bookable = factory.specialist(average_rating=4.0)
    factory.window(bookable)

    result = SearchService(db_session, cache_enabled=False).search(SearchRequest(specialty="Cardiology"), now=NOW)

    assert [s.candidate.id for s in result["specialists"]] == [bookable.id, no_slots.id]
    assert result["total_count"] == 2


def test_purge_expired_removes_only_stale_entries(db_session, factory):
    factory.specialist()
    service = SearchService(db_session)
    service.search(SearchRequest(specialty="Cardiology"), now=NOW - timedelta(hours=10))
    service.search(SearchRequest(specialty="Cardiology", language="English"), now=NOW)

    assert SearchCacheRepository.purge_expired(db_session, NOW) == 1
    assert db_session.query(SearchCacheEntry).count() == 1
