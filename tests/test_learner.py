"""Tests for the persisted usage learner."""

import json

import pytest

from giftsearch.backends import InMemoryKeyValueStore
from giftsearch.learner import UsageLearner

DAY = 24 * 60 * 60


def test_unknown_queries_are_optimistic(clock):
    learner = UsageLearner(InMemoryKeyValueStore(), clock=clock)
    assert learner.is_likely_successful("never seen before") is True


def test_success_rate_is_an_exponential_moving_average(clock):
    learner = UsageLearner(InMemoryKeyValueStore(), clock=clock)
    for _ in range(3):
        learner.record_outcome("Rare Thing", False, 0)
    assert learner.record("rare thing").success_rate == pytest.approx(0.512)
    assert learner.is_likely_successful("rare thing") is True

    learner.record_outcome("rare thing", False, 0)
    assert learner.record("rare thing").success_rate == pytest.approx(0.4096)
    assert learner.is_likely_successful("rare thing") is False


def test_success_with_zero_results_counts_as_failure(clock):
    learner = UsageLearner(InMemoryKeyValueStore(), clock=clock)
    learner.record_outcome("mug", True, 0)
    assert learner.record("mug").success_rate == pytest.approx(0.8)
    assert learner.record("mug").count == 1


def test_popular_queries_rank_recent_by_count_and_success(clock):
    learner = UsageLearner(InMemoryKeyValueStore(), clock=clock)
    learner.record_outcome("old favourite", True, 5)
    clock.advance(8 * DAY)
    for _ in range(3):
        learner.record_outcome("candles", True, 4)
    for _ in range(5):
        learner.record_outcome("broken query", False, 0)
    for _ in range(2):
        learner.record_outcome("scarf", True, 2)

    # candles 3 * 1.0, scarf 2 * 1.0, broken query 5 * 0.8**5
    assert learner.popular_queries(3) == ["candles", "scarf", "broken query"]
    assert learner.popular_queries(1) == ["candles"]


def test_writes_are_throttled_and_flush_forces_save(clock):
    store = InMemoryKeyValueStore()
    learner = UsageLearner(store, flush_seconds=30, clock=clock)
    learner.record_outcome("watch", True, 3)
    learner.record_outcome("watch", True, 3)
    assert store.saves == 0

    clock.advance(31)
    learner.record_outcome("wallet", True, 1)
    assert store.saves == 1

    learner.record_outcome("wallet", True, 1)
    learner.flush()
    assert store.saves == 2


def test_state_survives_restart_and_prunes_old_records(clock):
    store = InMemoryKeyValueStore()
    first = UsageLearner(store, scope="user-1", clock=clock)
    first.record_outcome("ancient", True, 1)
    clock.advance(31 * DAY)
    first.record_outcome("recent", True, 2)
    first.flush()

    second = UsageLearner(store, scope="user-1", clock=clock)
    assert second.load() == 1
    assert second.record("recent").count == 1
    assert second.record("ancient") is None

    other_scope = UsageLearner(store, scope="user-2", clock=clock)
    assert other_scope.load() == 0


@pytest.mark.parametrize(
    "raw",
    [
        b"{not json",
        b"[]",
        b"null",
        b'"x"',
        b'{"records": "nope"}',
        b'{"records": [1]}',
        json.dumps({"records": [{"bogus": 1}]}).encode(),
    ],
)
def test_corrupt_state_is_ignored(clock, raw):
    store = InMemoryKeyValueStore()
    store.save("giftsearch:usage:global", raw)
    learner = UsageLearner(store, clock=clock)
    assert learner.load() == 0
    assert len(learner) == 0


def test_usage_counts_without_moving_success_rate(clock):
    learner = UsageLearner(InMemoryKeyValueStore(), clock=clock)
    learner.record_outcome("lamp", False, 0)
    learner.record_usage("Lamp")
    learner.record_usage("lamp")

    record = learner.record("lamp")
    assert record.count == 3
    assert record.success_rate == pytest.approx(0.8)


def test_failing_query_is_retried_after_a_day(clock):
    learner = UsageLearner(InMemoryKeyValueStore(), clock=clock)
    for _ in range(4):
        learner.record_outcome("rare gadget", False, 0)
    assert learner.is_likely_successful("rare gadget") is False

    clock.advance(12 * 60 * 60)
    learner.record_usage("rare gadget")
    assert learner.is_likely_successful("rare gadget") is False

    clock.advance(12 * 60 * 60)
    assert learner.is_likely_successful("rare gadget") is True


def test_records_saved_before_retry_field_still_load(clock):
    store = InMemoryKeyValueStore()
    legacy = {"records": [{"query": "mug", "count": 2, "last_seen_at": clock(), "success_rate": 0.9}]}
    store.save("giftsearch:usage:global", json.dumps(legacy).encode())

    learner = UsageLearner(store, clock=clock)

    assert learner.load() == 1
    assert learner.record("mug").last_outcome_at == 0.0
