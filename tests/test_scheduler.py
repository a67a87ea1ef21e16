import asyncio
import random
from typing import Dict, List, Optional

import pytest
from pydantic import ValidationError

from ficarchive.config import SchedulerConfig
from ficarchive.errors import ExportCancelled, SchedulerError
from ficarchive.models import ContentUnit, ExportJob, JobKind
from ficarchive.scheduler import FetchScheduler, WorkItem


class ScriptedFetch:
    """Returns (or raises) the scripted results for one key, in order."""

    def __init__(self, *results: object) -> None:
        self.results: List[object] = list(results)
        self.calls = 0

    async def __call__(self) -> Optional[str]:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result  # type: ignore[return-value]


def _items(fetches: Dict[str, ScriptedFetch]) -> List[WorkItem]:
    return [WorkItem(key=key, label=key.upper(), fetch=fetch) for key, fetch in fetches.items()]


def _job(keys: List[str]) -> ExportJob:
    job = ExportJob(kind=JobKind.DOCUMENTS, target="test")
    job.units = [ContentUnit(index, key, key=key) for index, key in enumerate(keys, start=1)]
    return job


def test_all_items_succeed_in_first_pass(sleep) -> None:
    fetches = {"a": ScriptedFetch("A"), "b": ScriptedFetch("B"), "c": ScriptedFetch("C")}
    scheduler = FetchScheduler(SchedulerConfig.light(), sleep=sleep)

    result = asyncio.run(scheduler.run(_items(fetches)))

    assert list(result.outcomes.items()) == [("a", "A"), ("b", "B"), ("c", "C")]
    assert result.failures == []
    assert sleep.delays == [0.2, 0.2, 0.2]
    assert [event.message for event in result.events] == ["Fetching 1/3: A", "Fetching 2/3: B", "Fetching 3/3: C"]


def test_deferred_item_recovers_in_second_pass(sleep) -> None:
    fetches = {"a": ScriptedFetch("A"), "b": ScriptedFetch(RuntimeError("boom"), "B"), "c": ScriptedFetch("C")}
    job = _job(["a", "b", "c"])
    scheduler = FetchScheduler(SchedulerConfig.light(), sleep=sleep)

    result = asyncio.run(scheduler.run(_items(fetches), job))

    assert list(result.outcomes) == ["a", "b", "c"]
    assert result.successes == {"a": "A", "b": "B", "c": "C"}
    assert result.attempts == {"a": 1, "b": 2, "c": 1}
    assert sleep.delays == [0.2, 0.2, 0.2, 5.0, 3.0]
    assert job.success_count == 3
    assert job.permanent_failure_count == 0
    assert job.deferred == []
    messages = [event.message for event in job.events]
    assert "Cooling down for 5s before retrying 1 item(s)..." in messages
    assert messages[-1] == "Retrying 1/1: B"


def test_item_failing_twice_is_terminal(sleep) -> None:
    fetches = {"a": ScriptedFetch(ValueError("bad")), "b": ScriptedFetch("B"), "c": ScriptedFetch("")}
    job = _job(["a", "b", "c"])

    result = asyncio.run(FetchScheduler(SchedulerConfig.light(), sleep=sleep).run(_items(fetches), job))

    assert result.failures == ["a", "c"]
    assert result.outcomes == {"a": None, "b": "B", "c": None}
    assert fetches["a"].calls == 2
    assert fetches["c"].calls == 2
    assert job.success_count == 1
    assert job.permanent_failure_count == 2
    assert job.success_count + job.permanent_failure_count == job.total_unit_count


def test_one_status_event_per_attempt(sleep) -> None:
    fetches = {"a": ScriptedFetch(None, "A"), "b": ScriptedFetch(None)}
    result = asyncio.run(FetchScheduler(SchedulerConfig.light(), sleep=sleep).run(_items(fetches)))

    attempt_events = [event for event in result.events if event.attempt]
    assert len(attempt_events) == sum(result.attempts.values()) == 4
    assert [event.attempt for event in attempt_events] == [1, 1, 2, 2]


def test_timeout_counts_as_failure(sleep) -> None:
    async def never() -> str:
        await asyncio.sleep(10)
        return "late"

    config = SchedulerConfig(pass1_delay_min=0, pass1_delay_max=0, cooldown=0, pass2_delay=0, fetch_timeout=0.01)
    items = [WorkItem("slow", "Slow", never), WorkItem("fast", "Fast", ScriptedFetch("ok"))]

    result = asyncio.run(FetchScheduler(config, sleep=sleep).run(items))

    assert result.failures == ["slow"]
    assert result.outcomes["fast"] == "ok"
    assert result.attempts["slow"] == 2


def test_cancellation_stops_before_next_fetch(sleep) -> None:
    job = _job(["a", "b"])
    second = ScriptedFetch("B")

    async def first() -> str:
        job.cancel_token.set()
        return "A"

    items = [WorkItem("a", "A", first), WorkItem("b", "B", second)]
    with pytest.raises(ExportCancelled):
        asyncio.run(FetchScheduler(SchedulerConfig.light(), sleep=sleep).run(items, job))
    assert second.calls == 0


def test_empty_and_duplicate_work_lists_are_rejected(sleep) -> None:
    scheduler = FetchScheduler(sleep=sleep)
    with pytest.raises(SchedulerError):
        asyncio.run(scheduler.run([]))
    with pytest.raises(SchedulerError):
        asyncio.run(scheduler.run([WorkItem("a", "A", ScriptedFetch("x")), WorkItem("a", "A2", ScriptedFetch("y"))]))


def test_heavy_delay_stays_in_window() -> None:
    scheduler = FetchScheduler(SchedulerConfig.heavy(), rng=random.Random(7))
    delays = [scheduler.politeness_delay() for _ in range(50)]
    assert all(1.5 <= delay <= 3.0 for delay in delays)
    assert len(set(delays)) > 1


def test_config_rejects_inverted_window() -> None:
    with pytest.raises(ValidationError):
        SchedulerConfig(pass1_delay_min=2.0, pass1_delay_max=1.0)
    with pytest.raises(ValidationError):
        SchedulerConfig(fetch_timeout=0)
