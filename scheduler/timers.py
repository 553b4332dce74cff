"""TimerRegistry — one cancellable one-shot timer per job key.

Timers are APScheduler ``DateTrigger`` jobs on an ``AsyncIOScheduler``.
The registry owns the key → timer map; APScheduler only provides the
"run this coroutine at that moment" primitive.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


@dataclass
class ArmedTimer:
    """An armed timer and the config snapshot it was armed from."""
    job_key: str
    fire_at: datetime
    callback: TimerCallback
    config: Any = None
    job: Job | None = None


class TimerRegistry:
    """Thread-safe map from job key to its single armed timer."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._aps = scheduler or AsyncIOScheduler()
        self._timers: dict[str, ArmedTimer] = {}
        self._lock = threading.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._aps.running

    def start(self) -> None:
        """Start the timer runtime. Must be called with an event loop running."""
        if not self._aps.running:
            self._aps.start()

    def shutdown(self) -> None:
        self.clear()
        if self._aps.running:
            self._aps.shutdown(wait=False)

    # ── Arm / disarm ─────────────────────────────────────────────────────────

    def arm(
        self,
        job_key: str,
        fire_at: datetime,
        callback: TimerCallback,
        config: Any = None,
    ) -> ArmedTimer:
        """Schedule *callback* at *fire_at*, replacing any timer for *job_key*."""
        timer = ArmedTimer(job_key=job_key, fire_at=fire_at, callback=callback, config=config)
        with self._lock:
            previous = self._timers.pop(job_key, None)
            if previous is not None:
                self._cancel(previous)
            timer.job = self._aps.add_job(
                self._fire,
                trigger=DateTrigger(run_date=fire_at),
                id=job_key,
                kwargs={"job_key": job_key, "timer": timer},
                replace_existing=True,
                misfire_grace_time=None,
            )
            self._timers[job_key] = timer
        logger.debug("Timer armed", extra={"job_key": job_key, "fire_at": fire_at.isoformat()})
        return timer

    def disarm(self, job_key: str) -> bool:
        """Cancel and forget the timer for *job_key*. Returns True if one existed."""
        with self._lock:
            timer = self._timers.pop(job_key, None)
            if timer is None:
                return False
            self._cancel(timer)
        logger.debug("Timer disarmed", extra={"job_key": job_key})
        return True

    def is_armed(self, job_key: str) -> bool:
        with self._lock:
            return job_key in self._timers

    def get(self, job_key: str) -> ArmedTimer | None:
        with self._lock:
            return self._timers.get(job_key)

    def clear(self) -> int:
        """Disarm every timer. Returns how many were armed."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            for timer in timers:
                self._cancel(timer)
        return len(timers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)

    # ── Internal ──────────────────────────────────────────────────────────────

    def _cancel(self, timer: ArmedTimer) -> None:
        """Remove *timer*'s APScheduler job. Caller holds the lock.

        Jobs share the key as their id, so only a job still carrying this
        exact timer is removed; a newer arm() for the key is left alone.
        """
        job = self._aps.get_job(timer.job_key)
        if job is None or job.kwargs.get("timer") is not timer:
            return
        try:
            job.remove()
        except JobLookupError:
            # fired between the lookup and the removal
            pass

    async def _fire(self, job_key: str, timer: ArmedTimer) -> None:
        """APScheduler entry point: drop the map entry, then run the callback."""
        with self._lock:
            # a newer arm() may already own this key
            if self._timers.get(job_key) is timer:
                del self._timers[job_key]
        await timer.callback()
