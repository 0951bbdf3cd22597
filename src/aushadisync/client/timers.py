"""Timer source for periodic and deferred sync tasks.

This module provides:
- TimerSource: Protocol used by the worker, the outbox store and the status monitor
- SchedulerTimers: APScheduler-backed implementation

Jobs are keyed by id. Scheduling a job under an id that is already
scheduled replaces the previous job, so arming a timer twice never
leaves two timers running.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class TimerSource(Protocol):
    """Keyed timer capability."""

    def call_every(
        self,
        job_id: str,
        interval: float,
        func: Callable[[], Any],
        *,
        immediate: bool = False,
    ) -> None:
        """Run func every interval seconds (and right away if immediate)."""
        ...

    def call_later(self, job_id: str, delay: float, func: Callable[[], Any]) -> None:
        """Run func once after delay seconds."""
        ...

    def cancel(self, job_id: str) -> bool:
        """Cancel a job. Returns False if no such job was scheduled."""
        ...

    def is_scheduled(self, job_id: str) -> bool:
        """Check if a job is pending."""
        ...

    def shutdown(self) -> None:
        """Cancel every job and release resources."""
        ...


class SchedulerTimers:
    """TimerSource running jobs on an APScheduler BackgroundScheduler.

    The scheduler thread is started lazily on the first scheduled job.
    """

    def __init__(self) -> None:
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()

    def _ensure_started(self) -> BackgroundScheduler:
        with self._lock:
            if self._scheduler is None:
                self._scheduler = BackgroundScheduler(timezone=UTC)
                self._scheduler.start()
                logger.debug("Timer scheduler started")
            return self._scheduler

    def call_every(
        self,
        job_id: str,
        interval: float,
        func: Callable[[], Any],
        *,
        immediate: bool = False,
    ) -> None:
        scheduler = self._ensure_started()
        extra: dict[str, Any] = {}
        if immediate:
            extra["next_run_time"] = datetime.now(UTC)
        scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=interval),
            id=job_id,
            name=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **extra,
        )
        logger.debug("Scheduled %s every %.1fs (immediate=%s)", job_id, interval, immediate)

    def call_later(self, job_id: str, delay: float, func: Callable[[], Any]) -> None:
        scheduler = self._ensure_started()
        run_date = datetime.now(UTC) + timedelta(seconds=delay)
        scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_date),
            id=job_id,
            name=job_id,
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug("Scheduled %s in %.1fs", job_id, delay)

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            scheduler = self._scheduler
        if scheduler is None:
            return False
        try:
            scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug("Cancelled %s", job_id)
        return True

    def is_scheduled(self, job_id: str) -> bool:
        with self._lock:
            scheduler = self._scheduler
        if scheduler is None:
            return False
        return scheduler.get_job(job_id) is not None

    def shutdown(self) -> None:
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.debug("Timer scheduler stopped")
