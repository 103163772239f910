from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

import timely
from timely import every, in_
from timely.errors import (
    EngineSchedulingError,
    InvalidPeriodUnit,
    MalformedArguments,
    UnrecognizedOption,
)
from timely.scheduling import Scheduling

UTC = timezone.utc


def noop():
    pass


def test_schedule_then_stop_round_trip(scheduling, created_engines):
    job = scheduling.schedule(noop, in_(5, "minutes").every("day"))

    assert job["in"] == 5 * 60 * 1000
    assert job["every"] == 24 * 60 * 60 * 1000
    assert job["singleton"] is True
    assert job["num_threads"] == 5
    engine = created_engines[0]
    assert job["ids"] == {engine: [job["id"]]}
    assert list(engine.jobs) == [job["id"]]

    assert scheduling.stop(job) is True
    assert scheduling.stop(job) is False
    assert engine.stopped is True
    assert len(scheduling.registry) == 0


def test_equivalent_spec_forms(scheduling, created_engines):
    forms = [
        ((in_(5, "minutes").every("day").id_("report"),), {}),
        (({"in": [5, "minutes"], "every": "day", "id": "report"},), {}),
        (("in", [5, "minutes"], "every", "day", "id", "report"), {}),
        ((), {"in_": [5, "minutes"], "every": "day", "id": "report"}),
        ((every("day").in_(300_000).id_(":report"),), {}),
    ]
    results = []
    for args, kwargs in forms:
        job = scheduling.schedule(noop, *args, **kwargs)
        job.pop("ids")
        results.append(job)

    assert all(result == results[0] for result in results)
    assert len(created_engines) == 1
    # the same id replaces the previous job
    assert list(created_engines[0].jobs) == ["report"]


def test_engine_reused_per_configuration(scheduling, created_engines):
    first = scheduling.schedule(noop, in_=60_000)
    second = scheduling.schedule(noop, every="hour")
    third = scheduling.schedule(noop, {"every": "hour", "num-threads": 10})

    assert len(created_engines) == 2
    default_engine, custom_engine = created_engines
    assert custom_engine.config.num_threads == 10
    assert set(default_engine.jobs) == {first["id"], second["id"]}
    assert set(custom_engine.jobs) == {third["id"]}

    assert scheduling.stop(third) is True
    assert custom_engine.stopped is True
    assert default_engine.stopped is False
    assert set(default_engine.jobs) == {first["id"], second["id"]}

    fourth = scheduling.schedule(noop, every="hour", num_threads=5)
    assert fourth["ids"] == {default_engine: [fourth["id"]]}


def test_generated_ids_are_distinct(scheduling, created_engines):
    a = scheduling.schedule(noop, in_=1000)
    b = scheduling.schedule(noop, in_=1000)
    assert a["id"] != b["id"]
    assert len(created_engines[0].jobs) == 2
    assert scheduling.tracker.ids_for(created_engines[0]) == {a["id"], b["id"]}


def test_same_id_replaces_job(scheduling, created_engines):
    scheduling.schedule(noop, in_=1000, id="cleanup")
    job = scheduling.schedule(noop, every="minute", id=":cleanup")

    engine = created_engines[0]
    assert list(engine.jobs) == ["cleanup"]
    assert engine.jobs["cleanup"][1].every == 60_000
    assert job["id"] == "cleanup"


def test_last_job_removal_evicts_engine(scheduling, created_engines):
    a = scheduling.schedule(noop, in_=1000)
    b = scheduling.schedule(noop, in_=2000)

    assert scheduling.stop(a) is True
    assert created_engines[0].stopped is False

    assert scheduling.stop(b) is True
    assert created_engines[0].stopped is True
    assert created_engines[0].scheduled_jobs() == []

    scheduling.schedule(noop, in_=1000)
    assert len(created_engines) == 2
    assert created_engines[1] is not created_engines[0]


def test_unrecognized_option_has_no_side_effect(scheduling, created_engines):
    with pytest.raises(UnrecognizedOption) as exc_info:
        scheduling.schedule(noop, in_=1000, bogus=1)

    assert exc_info.value.option == "bogus"
    assert exc_info.value.operation == "schedule"
    assert created_engines == []
    assert len(scheduling.registry) == 0


def test_invalid_period_has_no_side_effect(scheduling, created_engines):
    with pytest.raises(InvalidPeriodUnit):
        scheduling.schedule(noop, every=[2, "fortnights"])
    assert created_engines == []


def test_odd_arguments(scheduling):
    with pytest.raises(MalformedArguments):
        scheduling.schedule(noop, "in", 5, "every")


def test_engine_rejection_propagates(scheduling, created_engines):
    with pytest.raises(EngineSchedulingError):
        scheduling.schedule(noop, cron="invalid", id="broken")

    assert created_engines[0].stopped is True
    assert len(scheduling.registry) == 0
    assert scheduling.tracker.ids_for(created_engines[0]) == set()


def test_engine_rejection_keeps_busy_engine(scheduling, created_engines):
    job = scheduling.schedule(noop, in_=1000)
    with pytest.raises(EngineSchedulingError):
        scheduling.schedule(noop, cron="invalid")

    assert created_engines[0].stopped is False
    assert list(created_engines[0].jobs) == [job["id"]]


def test_job_options_reach_engine(settings, engine_factory, created_engines):
    scheduling = Scheduling(
        settings=settings,
        engine_factory=engine_factory,
        clock=lambda: datetime(2026, 10, 17, 12, 0, tzinfo=UTC),
    )
    job = scheduling.schedule(noop, at="11:30", every=[2, "hours", 30, "minutes"], until="17:30", limit=4, singleton=False)

    options = created_engines[0].jobs[job["id"]][1]
    assert options.at == datetime(2026, 10, 18, 11, 30, tzinfo=UTC)
    assert options.until == datetime(2026, 10, 17, 17, 30, tzinfo=UTC)
    assert options.every == 150 * 60 * 1000
    assert options.limit == 4
    assert options.singleton is False
    assert options.in_ is None
    scheduling.shutdown()


def test_ids_are_output_only(scheduling, created_engines):
    job = scheduling.schedule(noop, in_=1000, ids={"elsewhere": ["x"]})
    assert job["ids"] == {created_engines[0]: [job["id"]]}


def test_stop_by_id_and_engine_options(scheduling, created_engines):
    scheduling.schedule(noop, in_=1000, id="x", num_threads=3)

    assert scheduling.stop(id="x") is False
    assert scheduling.stop("id", "x", "num-threads", 3) is True
    assert created_engines[0].stopped is True


def test_stop_requires_identity(scheduling):
    with pytest.raises(MalformedArguments):
        scheduling.stop()
    with pytest.raises(UnrecognizedOption):
        scheduling.stop(id="x", bogus=True)


def test_stop_tolerates_partial_failure(scheduling, created_engines):
    a = scheduling.schedule(noop, in_=1000)
    b = scheduling.schedule(noop, in_=1000)
    engine = created_engines[0]
    engine.failing_ids.add(a["id"])

    assert scheduling.stop(ids={engine: [a["id"], b["id"]]}) is True
    assert list(engine.jobs) == [a["id"]]
    assert engine.stopped is False


def test_stop_across_engines(scheduling, created_engines):
    a = scheduling.schedule(noop, in_=1000)
    b = scheduling.schedule(noop, in_=1000, num_threads=2)
    ids = {**a["ids"], **b["ids"]}

    assert scheduling.stop(ids=ids) is True
    assert all(engine.stopped for engine in created_engines)
    assert len(scheduling.registry) == 0


def test_concurrent_schedule_single_engine(scheduling, created_engines):
    barrier = threading.Barrier(10)
    jobs = []

    def worker():
        barrier.wait()
        jobs.append(scheduling.schedule(noop, in_=60_000))

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(created_engines) == 1
    assert len(created_engines[0].jobs) == 10


def test_module_level_functions(monkeypatch, scheduling, created_engines):
    monkeypatch.setattr("timely.scheduling._scheduling", scheduling)

    job = timely.schedule(noop, in_(1, "hour"))
    assert timely.get_scheduling() is scheduling
    assert timely.stop(job) is True
    assert created_engines[0].stopped is True
