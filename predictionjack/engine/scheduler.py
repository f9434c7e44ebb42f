"""
Polling scheduler.

One asyncio task per registered snapshot, each on its own interval, so a
slow read never holds up another. Every successful fetch is committed to
the store; every failure is recorded there and never raised. ``refresh``
runs jobs immediately, outside their schedule, and is what a confirmed
transaction calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Hashable, Optional

from .store import Freshness, SnapshotStore

logger = logging.getLogger(__name__)

Fetch = Callable[[], Awaitable[Any]]


@dataclass
class PollJob:
    key: Hashable
    fetch: Fetch
    interval: float
    task: Optional[asyncio.Task] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    cancelled: bool = False
    runs: int = 0


class PollingScheduler:

    def __init__(self, store: SnapshotStore):
        self.store = store
        self._jobs: dict[Hashable, PollJob] = {}
        self._running = asyncio.Event()
        self._running.set()
        self._started = False

    def register(self, key: Hashable, fetch: Fetch, interval: float) -> PollJob:
        """Add (or replace) the job for ``key``; starts it if the scheduler is running."""
        if key in self._jobs:
            self.cancel(key)
        job = PollJob(key, fetch, interval)
        self._jobs[key] = job
        if self._started:
            self._spawn(job)
        return job

    def jobs(self) -> list[Hashable]:
        return list(self._jobs)

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        self._started = True
        for job in self._jobs.values():
            if job.task is None:
                self._spawn(job)

    def _spawn(self, job: PollJob) -> None:
        job.task = asyncio.create_task(self._loop(job), name=f"poll:{job.key}")

    def pause(self) -> None:
        logger.info("Polling paused")
        self._running.clear()

    def resume(self) -> None:
        logger.info("Polling resumed")
        self._running.set()

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def cancel(self, key: Hashable) -> None:
        """Stop polling ``key``. No fetch for it starts after this returns."""
        job = self._jobs.pop(key, None)
        if job is None:
            return
        job.cancelled = True
        if job.task is not None:
            job.task.cancel()

    async def stop(self) -> None:
        tasks = [j.task for j in self._jobs.values() if j.task is not None]
        for key in list(self._jobs):
            self.cancel(key)
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._started = False

    # ── Polling ──────────────────────────────────────────────────────

    async def _loop(self, job: PollJob) -> None:
        while not job.cancelled:
            await self._running.wait()
            await self._poll(job)
            await asyncio.sleep(job.interval)

    async def _poll(self, job: PollJob) -> bool:
        """Run one fetch for ``job``; True if it was committed."""
        async with job.lock:
            if job.cancelled:
                return False
            job.runs += 1
            try:
                value = await job.fetch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                freshness = self.store.record_failure(job.key, e)
                if freshness == Freshness.DISCONNECTED:
                    logger.debug("Poll %s failed (disconnected): %s", job.key, e)
                else:
                    logger.info("Poll %s failed: %s", job.key, e)
                return False
            if job.cancelled:
                return False
            return self.store.commit(job.key, value)

    async def refresh(self, *keys: Hashable) -> dict[Hashable, bool]:
        """
        Poll ``keys`` now (all jobs when none given), concurrently.

        Unknown keys are skipped. Runs even while paused.
        """
        targets = [self._jobs[k] for k in (keys or self._jobs) if k in self._jobs]
        results = await asyncio.gather(*(self._poll(job) for job in targets))
        return {job.key: ok for job, ok in zip(targets, results)}
