"""Tests for the cleanup agent: expired deletion, backstop, tiers and idempotent start."""

from dataclasses import replace
from datetime import timedelta

from app.services.cleanup_agent import AGGRESSIVE, BACKSTOP_JOB_ID, NORMAL, ULTRA, CleanupAgent
from app.services.tournament_store import LifecycleStoreError
from tests.conftest import NOW


def _agent(store, settings, clock):
    return CleanupAgent(store, settings=settings, clock=clock)


# ---------------------------------------------------------------------------
# Deletion passes
# ---------------------------------------------------------------------------


def test_deletes_tournaments_past_ttl(store, settings, clock, make_tournament):
    expired = make_tournament(start_offset=timedelta(hours=-2), ttl=NOW - timedelta(seconds=1))
    live = make_tournament(start_offset=timedelta(minutes=-10), ttl=NOW + timedelta(hours=1, minutes=50))

    result = _agent(store, settings, clock).delete_expired_tournaments()

    assert result.success is True
    assert result.deleted_count == 1
    assert store.get(expired.id) is None
    assert store.get(live.id) is not None


def test_concurrent_agents_on_same_tick(store, settings, clock, make_tournament):
    """Second agent finds the tournament already gone and still reports success."""
    expired = make_tournament(start_offset=timedelta(hours=-2), ttl=NOW - timedelta(seconds=1))
    first = _agent(store, settings, clock)
    second = _agent(store, settings, clock)

    assert first.delete_expired_tournaments().deleted_count == 1

    result = second.delete_expired_tournaments()
    assert result.success is True
    assert result.deleted_count == 0
    assert store.get(expired.id) is None


def test_row_vanishing_between_query_and_delete(store, settings, clock, make_tournament, monkeypatch):
    expired = make_tournament(start_offset=timedelta(hours=-2), ttl=NOW - timedelta(minutes=1))
    agent = _agent(store, settings, clock)

    found = store.find_expired(NOW)
    store.delete_expired(expired.id, NOW)
    monkeypatch.setattr(store, "find_expired", lambda now, limit=50: found)

    result = agent.delete_expired_tournaments()
    assert result.success is True
    assert result.deleted_count == 0


def test_nothing_to_delete(store, settings, clock):
    result = _agent(store, settings, clock).delete_expired_tournaments()
    assert result.success is True
    assert result.deleted_count == 0
    assert result.message == "No expired tournaments to clean up"


def test_store_failure_reported_not_raised(store, settings, clock, monkeypatch):
    def boom(now, limit=50):
        raise LifecycleStoreError("connection reset")

    monkeypatch.setattr(store, "find_expired", boom)
    result = _agent(store, settings, clock).delete_expired_tournaments()

    assert result.success is False
    assert result.error == "connection reset"


def test_per_record_delete_failure_isolated(store, settings, clock, make_tournament, monkeypatch):
    bad = make_tournament(name="Bad", start_offset=timedelta(hours=-3), ttl=NOW - timedelta(hours=1))
    good = make_tournament(name="Good", start_offset=timedelta(hours=-3), ttl=NOW - timedelta(minutes=30))
    real_delete = store.delete_expired

    def flaky_delete(tournament_id, now):
        if tournament_id == bad.id:
            raise LifecycleStoreError("lock timeout")
        return real_delete(tournament_id, now)

    monkeypatch.setattr(store, "delete_expired", flaky_delete)
    result = _agent(store, settings, clock).delete_expired_tournaments()

    assert result.success is False
    assert result.deleted_count == 1
    assert store.get(good.id) is None
    assert store.get(bad.id) is not None


def test_check_is_read_only(store, settings, clock, make_tournament):
    expired = make_tournament(start_offset=timedelta(hours=-2), ttl=NOW - timedelta(seconds=1))

    check = _agent(store, settings, clock).check_for_expired_tournaments()

    assert check.has_expired is True
    assert check.expired_count == 1
    assert store.get(expired.id) is not None


def test_tournament_deleted_once_clock_passes_ttl(store, settings, clock, make_tournament):
    tournament = make_tournament(start_offset=timedelta(minutes=-10), ttl=NOW + timedelta(minutes=1))
    agent = _agent(store, settings, clock)

    assert agent.tick(NORMAL) is None
    assert store.get(tournament.id) is not None

    clock.advance(minutes=1)
    result = agent.tick(NORMAL)
    assert result.deleted_count == 1
    assert store.get(tournament.id) is None


def test_one_pass_clears_more_than_a_batch(store, settings, clock, make_tournament):
    due = [
        make_tournament(name=f"Due {i}", start_offset=timedelta(hours=-2), ttl=NOW - timedelta(seconds=1))
        for i in range(settings.cleanup_batch_limit + 10)
    ]
    live = make_tournament(start_offset=timedelta(minutes=-10), ttl=NOW + timedelta(hours=1))

    result = _agent(store, settings, clock).tick(NORMAL)

    assert result.success is True
    assert result.deleted_count == len(due)
    assert store.count_expired(NOW) == 0
    assert store.get(live.id) is not None


def test_forced_pass_uses_small_batches_until_drained(store, settings, clock, make_tournament):
    for i in range(7):
        make_tournament(name=f"Due {i}", start_offset=timedelta(hours=-3), ttl=NOW - timedelta(minutes=i))

    result = _agent(store, settings, clock).delete_expired_tournaments(max_batch_size=3)

    assert result.deleted_count == 7
    assert store.find_expired(NOW) == []


def test_pass_stops_when_a_full_batch_makes_no_progress(store, settings, clock, make_tournament, monkeypatch):
    for i in range(3):
        make_tournament(name=f"Stuck {i}", start_offset=timedelta(hours=-3), ttl=NOW - timedelta(minutes=5))
    calls = []

    def stuck_delete(tournament_id, now):
        calls.append(tournament_id)
        raise LifecycleStoreError("row locked")

    monkeypatch.setattr(store, "delete_expired", stuck_delete)
    result = _agent(store, settings, clock).delete_expired_tournaments(max_batch_size=3)

    assert result.success is False
    assert result.deleted_count == 0
    assert len(calls) == 3


# ---------------------------------------------------------------------------
# Backstop
# ---------------------------------------------------------------------------


def test_backstop_deletes_untagged_stale(store, settings, clock, make_tournament):
    missed = make_tournament(name="Missed", start_offset=timedelta(hours=-3))
    recent = make_tournament(name="Recent", start_offset=timedelta(hours=-1))

    result = _agent(store, settings, clock).run_backstop()

    assert result.deleted_count == 1
    assert store.get(missed.id) is None
    assert store.get(recent.id) is not None


def test_backstop_clears_more_than_a_batch(store, settings, clock, make_tournament):
    for i in range(settings.cleanup_batch_limit + 10):
        make_tournament(name=f"Missed {i}", start_offset=timedelta(hours=-3))

    result = _agent(store, settings, clock).run_backstop()

    assert result.success is True
    assert result.deleted_count == settings.cleanup_batch_limit + 10
    assert store.find_untagged_stale(NOW - timedelta(hours=2)) == []


def test_backstop_leaves_tagged_tournaments(store, settings, clock, make_tournament):
    tagged = make_tournament(start_offset=timedelta(hours=-3), ttl=NOW + timedelta(minutes=5))
    result = _agent(store, settings, clock).run_backstop()
    assert result.deleted_count == 0
    assert store.get(tagged.id) is not None


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


def test_initialize_is_idempotent(store, settings, clock, make_tournament):
    expired = make_tournament(start_offset=timedelta(hours=-2), ttl=NOW - timedelta(seconds=1))
    agent = _agent(store, settings, clock)
    try:
        assert agent.initialize_cleanup() is True
        assert agent.initialize_cleanup() is False
        assert agent.initialize_cleanup() is False

        job_ids = sorted(job.id for job in agent.scheduler.get_jobs())
        assert job_ids == sorted([BACKSTOP_JOB_ID, "cleanup-normal"])
        # Startup pass ran immediately
        assert store.get(expired.id) is None
    finally:
        agent.stop()


def test_stop_allows_reinitialize(store, settings, clock):
    agent = _agent(store, settings, clock)
    agent.initialize_cleanup()
    agent.stop()

    assert agent.initialized is False
    assert agent.active_tiers() == []
    try:
        assert agent.initialize_cleanup() is True
        assert agent.active_tiers() == [NORMAL]
    finally:
        agent.stop()


def test_faster_tiers_do_not_duplicate(store, settings, clock):
    agent = _agent(store, settings, clock)
    try:
        agent.initialize_cleanup()
        agent.start_aggressive_cleanup()
        agent.start_aggressive_cleanup()
        tier = agent.start_ultra_aggressive_cleanup()
        agent.start_ultra_aggressive_cleanup()

        assert tier.interval_seconds == settings.cleanup_ultra_seconds
        assert agent.active_tiers() == [NORMAL, AGGRESSIVE, ULTRA]
        assert len(agent.scheduler.get_jobs()) == 4
    finally:
        agent.stop()


def test_ultra_tier_stops_after_empty_checks(store, settings, clock):
    agent = _agent(store, replace(settings, cleanup_ultra_max_empty_checks=3), clock)
    try:
        agent.start_ultra_aggressive_cleanup()
        agent.tick(ULTRA)
        agent.tick(ULTRA)
        assert ULTRA in agent.active_tiers()
        agent.tick(ULTRA)
        assert ULTRA not in agent.active_tiers()
    finally:
        agent.stop()


def test_ultra_tier_resets_empty_count_when_work_found(store, settings, clock, make_tournament):
    agent = _agent(store, replace(settings, cleanup_ultra_max_empty_checks=2), clock)
    try:
        agent.start_ultra_aggressive_cleanup()
        agent.tick(ULTRA)
        make_tournament(start_offset=timedelta(hours=-2), ttl=NOW - timedelta(seconds=1))
        agent.tick(ULTRA)
        agent.tick(ULTRA)
        assert ULTRA in agent.active_tiers()
    finally:
        agent.stop()


def test_ultra_tier_stops_after_max_lifetime(store, settings, clock):
    agent = _agent(store, replace(settings, cleanup_ultra_max_seconds=0), clock)
    try:
        agent.start_ultra_aggressive_cleanup()
        agent.tick(ULTRA)
        assert ULTRA not in agent.active_tiers()
    finally:
        agent.stop()


def test_normal_tier_never_auto_stops(store, settings, clock):
    agent = _agent(store, settings, clock)
    try:
        agent.initialize_cleanup()
        for _ in range(20):
            agent.tick(NORMAL)
        assert NORMAL in agent.active_tiers()
    finally:
        agent.stop()


def test_tick_never_raises(store, settings, clock, monkeypatch):
    agent = _agent(store, settings, clock)

    def boom(now, limit=10):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(store, "count_expired", boom)
    assert agent.tick(NORMAL) is None
