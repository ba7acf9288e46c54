import pytest

from services.dedup_cache import DedupCache


def test_second_delivery_is_rejected():
    cache = DedupCache(capacity=10)
    assert cache.check_and_record("Ev1") is True
    assert cache.check_and_record("Ev1") is False
    assert "Ev1" in cache


def test_oldest_id_is_evicted_over_capacity():
    cache = DedupCache(capacity=3)
    for event_id in ("a", "b", "c", "d"):
        assert cache.check_and_record(event_id)
    assert len(cache) == 3
    assert "a" not in cache
    assert cache.check_and_record("a") is True
    assert "b" not in cache


def test_window_lets_old_ids_through_again():
    now = [100.0]
    cache = DedupCache(capacity=10, window_seconds=60, clock=lambda: now[0])
    assert cache.check_and_record("x")
    now[0] += 30
    assert not cache.check_and_record("x")
    now[0] += 31
    assert cache.check_and_record("x")


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        DedupCache(capacity=0)
