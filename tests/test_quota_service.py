from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from citebot.services.quota_service import FREE_DAILY_LIMIT, UNLIMITED, QuotaService
from conftest import FixedClock


def _afternoon() -> datetime:
    return datetime(2026, 3, 10, 15, 30).astimezone()


def test_free_plan_stops_after_daily_limit(quota_store):
    now = _afternoon()
    svc = QuotaService(quota_store, clock=FixedClock(now))

    for i in range(FREE_DAILY_LIMIT):
        status = svc.check_and_consume("1.2.3.4")
        assert status.allowed
        assert status.daily_used == i + 1
        assert status.remaining == FREE_DAILY_LIMIT - (i + 1)

    denied = svc.check_and_consume("1.2.3.4")
    assert not denied.allowed
    assert denied.remaining == 0
    assert denied.daily_used == FREE_DAILY_LIMIT
    assert denied.reset_at == (now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1))
    assert (denied.reset_at.day, denied.reset_at.hour, denied.reset_at.minute) == (11, 0, 0)
    assert str(FREE_DAILY_LIMIT) in denied.message


def test_repeated_denials_never_raise_daily_used(quota_store):
    svc = QuotaService(quota_store, clock=FixedClock(_afternoon()))
    for _ in range(25):
        svc.check_and_consume("abc")

    record = quota_store.get("abc")
    assert record.daily_queries == FREE_DAILY_LIMIT
    assert record.total_queries == FREE_DAILY_LIMIT


def test_counter_resets_on_next_local_day(quota_store):
    clock = FixedClock(_afternoon())
    svc = QuotaService(quota_store, clock=clock)
    for _ in range(FREE_DAILY_LIMIT):
        svc.check_and_consume("abc")
    assert not svc.check_and_consume("abc").allowed

    clock.moment = clock.moment + timedelta(days=1)
    status = svc.check_and_consume("abc")

    assert status.allowed
    assert status.daily_used == 1
    assert quota_store.get("abc").total_queries == FREE_DAILY_LIMIT + 1


def test_unlimited_plan(quota_store):
    svc = QuotaService(quota_store, clock=FixedClock(_afternoon()))
    svc.update_plan("vip", "premium")

    for _ in range(FREE_DAILY_LIMIT + 5):
        status = svc.check_and_consume("vip")

    assert status.allowed
    assert status.daily_limit == UNLIMITED
    assert status.remaining == UNLIMITED


def test_store_failure_fails_open():
    class BrokenStore:
        def get_or_create(self, identifier, quota_reset_at):
            raise ConnectionError("database down")

    status = QuotaService(BrokenStore(), clock=FixedClock(_afternoon())).check_and_consume("abc")

    assert status.allowed
    assert status.plan == "free"
    assert status.remaining == FREE_DAILY_LIMIT


def test_get_status_does_not_consume(quota_store):
    svc = QuotaService(quota_store, clock=FixedClock(_afternoon()))
    svc.check_and_consume("abc")

    first = svc.get_status("abc")
    second = svc.get_status("abc")

    assert first.daily_used == second.daily_used == 1
    assert quota_store.get("abc").daily_queries == 1


def test_update_plan_rejects_unknown_plan(quota_store):
    svc = QuotaService(quota_store, clock=FixedClock(_afternoon()))
    with pytest.raises(ValueError):
        svc.update_plan("abc", "gold")


def test_stats(quota_store):
    svc = QuotaService(quota_store, clock=FixedClock(_afternoon()))
    svc.check_and_consume("a")
    svc.check_and_consume("a")
    svc.check_and_consume("b")
    svc.update_plan("c", "premium")

    stats = svc.get_stats()

    assert stats["total_users"] == 3
    assert stats["active_today"] == 2
    free = next(row for row in stats["by_plan"] if row["plan"] == "free")
    assert free["count"] == 2
    assert free["total_queries"] == 3


def test_concurrent_requests_never_exceed_the_daily_limit(quota_store):
    svc = QuotaService(quota_store, clock=FixedClock(_afternoon()))

    with ThreadPoolExecutor(max_workers=16) as pool:
        statuses = list(pool.map(lambda _: svc.check_and_consume("same"), range(30)))

    assert sum(s.allowed for s in statuses) == FREE_DAILY_LIMIT
    record = quota_store.records["same"]
    assert record.daily_queries == FREE_DAILY_LIMIT
    assert record.total_queries == FREE_DAILY_LIMIT
