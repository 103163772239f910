from __future__ import annotations

import pytest

from timely.config.settings import Settings
from timely.errors import EngineSchedulingError
from timely.scheduling import Scheduling


class FakeEngine:
    """In-memory stand-in for the scheduling engine."""

    def __init__(self, config, settings):
        self.config = config
        self.settings = settings
        self.jobs = {}
        self.stopped = False
        self.failing_ids = set()

    def schedule(self, job_id, fn, options):
        if options.cron == "invalid":
            raise EngineSchedulingError(job_id, "invalid cron expression")
        self.jobs[job_id] = (fn, options)

    def unschedule(self, job_id):
        if job_id in self.failing_ids:
            raise RuntimeError(f"cannot unschedule {job_id}")
        return self.jobs.pop(job_id, None) is not None

    def scheduled_jobs(self):
        return list(self.jobs)

    def stop(self):
        self.stopped = True


@pytest.fixture(autouse=True)
def fixture_clean_env(monkeypatch):
    monkeypatch.delenv("TIMELY_TIMEZONE", raising=False)
    monkeypatch.delenv("TIMELY_NUM_THREADS", raising=False)


@pytest.fixture(name="settings")
def fixture_settings():
    return Settings(timezone="UTC")


@pytest.fixture(name="created_engines")
def fixture_created_engines():
    return []


@pytest.fixture(name="engine_factory")
def fixture_engine_factory(created_engines):
    def factory(config, settings):
        engine = FakeEngine(config, settings)
        created_engines.append(engine)
        return engine

    return factory


@pytest.fixture(name="scheduling")
def fixture_scheduling(settings, engine_factory):
    scheduling = Scheduling(settings=settings, engine_factory=engine_factory)
    yield scheduling
    scheduling.shutdown()
