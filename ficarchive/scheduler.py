"""Polite sequential fetching with a two-pass retry protocol.

The host throttles clients that fetch aggressively, and single requests
fail for no lasting reason often enough that a long story rarely
downloads cleanly in one sweep. ``FetchScheduler`` therefore:

1. walks the work items in order, one fetch at a time, waiting a
   politeness delay before each one; an item that fails (exception,
   timeout or empty content) is parked on a deferred queue and the
   sweep moves on;
2. if anything was deferred, waits one longer cooldown;
3. retries each deferred item exactly once, with a longer delay.

Items that fail both passes are terminal failures. Individual failures
never raise; only a batch that cannot start, or a cancelled one, does.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .config import SchedulerConfig
from .errors import ExportCancelled, SchedulerError
from .models import ExportJob, StatusEvent

logger = logging.getLogger(__name__)

FetchFunc = Callable[[], Awaitable[Optional[str]]]
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class WorkItem:
    key: str
    label: str
    fetch: FetchFunc


@dataclass
class ScheduleResult:
    """Outcome of one batch.

    ``outcomes`` maps every key to its content, or ``None`` for a terminal
    failure; ``failures`` keeps the failed keys in source order.
    """

    outcomes: Dict[str, Optional[str]] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)
    attempts: Dict[str, int] = field(default_factory=dict)
    events: List[StatusEvent] = field(default_factory=list)

    @property
    def successes(self) -> Dict[str, str]:
        return {key: value for key, value in self.outcomes.items() if value is not None}


class FetchScheduler:
    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
        on_event: Optional[Callable[[StatusEvent], None]] = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._on_event = on_event

    def politeness_delay(self) -> float:
        low, high = self.config.pass1_delay_min, self.config.pass1_delay_max
        if high <= low:
            return low
        return self._rng.uniform(low, high)

    async def run(self, items: Sequence[WorkItem], job: Optional[ExportJob] = None) -> ScheduleResult:
        """Fetch every item and return the per-key outcome map.

        When ``job`` is given its cancellation token is honoured, its
        deferred queue and counters are kept current and every status
        event is recorded on it.
        """
        if not items:
            raise SchedulerError("Nothing to fetch: the work list is empty")
        keys = [item.key for item in items]
        if len(set(keys)) != len(keys):
            raise SchedulerError("Work item keys must be unique")

        result = ScheduleResult()
        deferred: List[WorkItem] = []
        total = len(items)

        for index, item in enumerate(items, start=1):
            await self._wait(self.politeness_delay(), job)
            self._emit(result, job, f"Fetching {index}/{total}: {item.label}", item.key, 1)
            content = await self._attempt(item, result)
            if content is None:
                deferred.append(item)
                if job is not None:
                    job.deferred.append(item.key)
                logger.info("Deferred %s for a second pass", item.label)
                continue
            self._succeed(result, job, item, content)

        if deferred:
            self._emit(
                result,
                job,
                f"Cooling down for {self.config.cooldown:g}s before retrying {len(deferred)} item(s)...",
            )
            await self._wait(self.config.cooldown, job)

            for index, item in enumerate(list(deferred), start=1):
                await self._wait(self.config.pass2_delay, job)
                self._emit(result, job, f"Retrying {index}/{len(deferred)}: {item.label}", item.key, 2)
                content = await self._attempt(item, result)
                if job is not None and item.key in job.deferred:
                    job.deferred.remove(item.key)
                if content is None:
                    result.outcomes[item.key] = None
                    result.failures.append(item.key)
                    if job is not None:
                        job.permanent_failure_count += 1
                    logger.warning("Giving up on %s after two passes", item.label)
                else:
                    self._succeed(result, job, item, content)

        # Keep outcomes in source order regardless of which pass finished an item.
        result.outcomes = {key: result.outcomes.get(key) for key in keys}
        result.failures = [key for key in keys if key in result.failures]
        logger.info(
            "Batch finished: %d fetched, %d failed",
            total - len(result.failures),
            len(result.failures),
        )
        return result

    async def _attempt(self, item: WorkItem, result: ScheduleResult) -> Optional[str]:
        result.attempts[item.key] = result.attempts.get(item.key, 0) + 1
        try:
            if self.config.fetch_timeout is not None:
                content = await asyncio.wait_for(item.fetch(), timeout=self.config.fetch_timeout)
            else:
                content = await item.fetch()
        except asyncio.TimeoutError:
            logger.warning("Timed out fetching %s", item.label)
            return None
        except Exception as exc:
            logger.warning("Fetch failed for %s: %s", item.label, exc)
            return None
        if not content or not content.strip():
            logger.warning("Empty content for %s", item.label)
            return None
        return content

    def _succeed(self, result: ScheduleResult, job: Optional[ExportJob], item: WorkItem, content: str) -> None:
        result.outcomes[item.key] = content
        if job is not None:
            job.success_count += 1

    def _emit(
        self,
        result: ScheduleResult,
        job: Optional[ExportJob],
        message: str,
        key: Optional[str] = None,
        attempt: int = 0,
    ) -> None:
        event = StatusEvent(message=message, key=key, attempt=attempt)
        result.events.append(event)
        if job is not None:
            job.record(event)
        if self._on_event is not None:
            self._on_event(event)

    async def _wait(self, seconds: float, job: Optional[ExportJob]) -> None:
        self._check_cancelled(job)
        if seconds > 0:
            await self._sleep(seconds)
        self._check_cancelled(job)

    @staticmethod
    def _check_cancelled(job: Optional[ExportJob]) -> None:
        if job is not None and job.cancel_token.is_set():
            raise ExportCancelled("Export cancelled")
