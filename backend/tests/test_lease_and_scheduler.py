from datetime import timedelta

import pytest
from redis.exceptions import LockError

from statsengine import tasks
from statsengine.core.config import settings
from statsengine.core.errors import DataSourceUnavailable
from statsengine.core.lock import pipeline_lease
from statsengine.workers import scheduler as scheduler_module


class StubLock:
    def __init__(self, held: set, name: str, expired: bool = False):
        self.held = held
        self.name = name
        self.expired = expired

    def acquire(self, blocking=False):
        if self.name in self.held:
            return False
        self.held.add(self.name)
        return True

    def release(self):
        if self.expired:
            raise LockError("Cannot release an unlocked lock")
        self.held.discard(self.name)


class StubRedis:
    """Just enough of redis.Redis for the pipeline lease."""

    def __init__(self, expired: bool = False):
        self.held: set = set()
        self.expired = expired

    def lock(self, name, timeout=None, blocking=False):
        return StubLock(self.held, name, self.expired)


def test_second_holder_is_turned_away():
    redis_connection = StubRedis()

    with pipeline_lease(redis_connection) as first:
        assert first is True
        with pipeline_lease(redis_connection) as second:
            assert second is False

    assert redis_connection.held == set()


def test_expired_lease_release_is_tolerated():
    with pipeline_lease(StubRedis(expired=True)) as owned:
        assert owned is True


def test_no_connection_means_always_owned():
    with pipeline_lease(None) as owned:
        assert owned is True


def test_run_exclusive_skips_when_lease_is_held(database, monkeypatch):
    monkeypatch.setattr(settings, "PIPELINE_LOCK_ENABLED", True)
    redis_connection = StubRedis()
    redis_connection.held.add(settings.PIPELINE_LOCK_NAME)
    calls = []
    monkeypatch.setattr(tasks, "run_statistics_pipeline", lambda db: calls.append(db))

    assert tasks.run_exclusive(database, redis_connection) is None
    assert calls == []


def test_run_exclusive_runs_pipeline_when_lease_is_free(database, monkeypatch):
    monkeypatch.setattr(tasks, "run_statistics_pipeline", lambda db: "ran")

    assert tasks.run_exclusive(database, StubRedis()) == "ran"


@pytest.fixture
def fresh_scheduler(monkeypatch):
    monkeypatch.setattr(scheduler_module, "_scheduler", None)
    monkeypatch.setattr(settings, "STATS_REFRESH_INTERVAL_MINUTES", 60)


def test_scheduler_job_never_overlaps_itself(database, fresh_scheduler):
    scheduler = scheduler_module.bootstrap_scheduler(database)

    job = scheduler.get_job(scheduler_module.REFRESH_JOB_ID)
    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.trigger.interval == timedelta(minutes=60)


def test_scheduler_bootstraps_once(database, fresh_scheduler):
    first = scheduler_module.bootstrap_scheduler(database)
    second = scheduler_module.bootstrap_scheduler(database)

    assert first is second
    assert len(first.get_jobs()) == 1


def test_scheduled_job_survives_unavailable_database(database, monkeypatch):
    def unavailable(_database, _redis_connection=None):
        raise DataSourceUnavailable("connection refused")

    monkeypatch.setattr(scheduler_module, "run_exclusive", unavailable)

    scheduler_module.refresh_job(database)
