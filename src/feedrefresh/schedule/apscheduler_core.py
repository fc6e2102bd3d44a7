"""Type-safe wrapper around APScheduler for feedrefresh's periodic tasks.

This module isolates the rest of the codebase from direct APScheduler
dependencies: it owns the scheduler instance, schedules interval jobs,
hands back explicit task handles, and exposes typed event listeners.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
import logging
from typing import Any, ParamSpec, TypeVar

from apscheduler.events import (  # type: ignore
    EVENT_JOB_ERROR,  # type: ignore
    EVENT_JOB_EXECUTED,  # type: ignore
    EVENT_JOB_MISSED,  # type: ignore
    JobExecutionEvent,  # type: ignore
)
from apscheduler.executors.asyncio import AsyncIOExecutor  # type: ignore
from apscheduler.jobstores.base import JobLookupError  # type: ignore
from apscheduler.jobstores.memory import MemoryJobStore  # type: ignore
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class ScheduledTask:
    """Handle on a periodic job registered with an ``APSchedulerCore``.

    Cancelling the handle removes the job, so no further ticks fire. A tick
    that is already running is not interrupted.

    Attributes:
        job_id: The APScheduler job identifier.
    """

    def __init__(self, core: "APSchedulerCore", job_id: str):
        self._core = core
        self.job_id = job_id
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def next_run_time(self) -> datetime | None:
        """Return when the task fires next, or None once cancelled."""
        if self._cancelled:
            return None
        return self._core.get_next_run_time(self.job_id)

    def cancel(self) -> None:
        """Stop the task from firing again. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        try:
            self._core.remove_job(self.job_id)
        except JobLookupError:  # type: ignore
            logger.debug(
                "Scheduled task already removed.", extra={"job_id": self.job_id}
            )


class APSchedulerCore:
    """Wrapper around APScheduler to provide a typesafe interface.

    It makes a couple assumptions:

    - It stores jobs in memory -- no persistent storage.
    - It uses the AsyncIOScheduler scheduler, so coroutine callbacks run on
      the application's event loop.
    - Periodic jobs use interval triggers; overlapping runs of the same job
      are prevented and missed runs are coalesced into one.
    """

    def __init__(self):
        self._scheduler = AsyncIOScheduler(  # type: ignore
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # Merge multiple missed executions into one
                "max_instances": 1,  # A pass never overlaps the previous one
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )

    def add_job_executed_listener(
        self, callback: Callable[[str, datetime, Any], None]
    ) -> None:
        """Add a listener for job executed events.

        Args:
            callback: Called when a job returns, with args:
                - job_id: The job identifier.
                - scheduled_run_time: The scheduled run time of the job.
                - retval: The return value of the job.
        """

        def callback_wrapper(event: JobExecutionEvent) -> None:  # type: ignore
            callback(
                event.job_id,  # type: ignore
                event.scheduled_run_time,  # type: ignore
                event.retval,  # type: ignore
            )

        self._scheduler.add_listener(  # type: ignore
            callback_wrapper,  # type: ignore
            EVENT_JOB_EXECUTED,  # type: ignore
        )

    def add_job_failed_listener(
        self, callback: Callable[[str, datetime, BaseException], None]
    ) -> None:
        """Add a listener for job failed events.

        Args:
            callback: Called when a job raises, with args:
                - job_id: The job identifier.
                - scheduled_run_time: The scheduled run time of the job.
                - exception: The exception that occurred.
        """

        def callback_wrapper(event: JobExecutionEvent) -> None:  # type: ignore
            callback(
                event.job_id,  # type: ignore
                event.scheduled_run_time,  # type: ignore
                event.exception,  # type: ignore
            )

        self._scheduler.add_listener(  # type: ignore
            callback_wrapper,  # type: ignore
            EVENT_JOB_ERROR,  # type: ignore
        )

    def add_job_missed_listener(
        self, callback: Callable[[str, datetime], None]
    ) -> None:
        """Add a listener for job missed events.

        Args:
            callback: Called when a run is skipped, with args:
                - job_id: The job identifier.
                - scheduled_run_time: The scheduled run time that was missed.
        """

        def callback_wrapper(event: JobExecutionEvent) -> None:  # type: ignore
            callback(
                event.job_id,  # type: ignore
                event.scheduled_run_time,  # type: ignore
            )

        self._scheduler.add_listener(  # type: ignore
            callback_wrapper,  # type: ignore
            EVENT_JOB_MISSED,  # type: ignore
        )

    def schedule_interval_job(
        self,
        job_id: str,
        interval: timedelta,
        callback: Callable[P, R],
        run_immediately: bool,
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> ScheduledTask:
        """Schedule a job to run every ``interval``.

        Args:
            job_id: The job identifier; an existing job with it is replaced.
            interval: Time between runs.
            callback: The function or coroutine function to run.
            run_immediately: Fire the first run now rather than after one interval.
            args: The arguments to pass to the callback function.
            kwargs: The keyword arguments to pass to the callback function.

        Returns:
            A handle that cancels the job.

        Raises:
            ValueError: If ``interval`` is not positive.
        """
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        trigger = IntervalTrigger(  # type: ignore
            seconds=interval.total_seconds(), timezone=UTC
        )
        job_options: dict[str, Any] = {}
        if run_immediately:
            job_options["next_run_time"] = datetime.now(UTC)
        self._scheduler.add_job(  # type: ignore
            callback,
            args=args,
            kwargs=kwargs,
            trigger=trigger,
            id=job_id,
            replace_existing=True,
            **job_options,
        )
        logger.debug(
            "Interval job scheduled.",
            extra={
                "job_id": job_id,
                "interval_seconds": interval.total_seconds(),
                "run_immediately": run_immediately,
            },
        )
        return ScheduledTask(self, job_id)

    def start(self) -> None:
        """Start the scheduler. Must be called with a running event loop."""
        self._scheduler.start()  # type: ignore

    def remove_job(self, job_id: str) -> None:
        """Remove a scheduled job.

        Args:
            job_id: The job identifier to remove.

        Raises:
            JobLookupError: If no such job exists.
        """
        self._scheduler.remove_job(job_id)  # type: ignore

    def get_job_ids(self) -> list[str]:
        """Get all scheduled job IDs.

        Returns:
            List of scheduled job IDs.
        """
        return [job.id for job in self._scheduler.get_jobs()]  # type: ignore

    def get_next_run_time(self, job_id: str) -> datetime | None:
        """Return the next run time of a job, or None if it is not scheduled."""
        job = self._scheduler.get_job(job_id)  # type: ignore
        if job is None:
            return None
        return job.next_run_time  # type: ignore

    @property
    def running(self) -> bool:
        """Check if the scheduler is currently running.

        Returns:
            True if the scheduler is running, False otherwise.
        """
        return self._scheduler.running  # type: ignore

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete before shutting down.
        """
        self._scheduler.shutdown(wait=wait)  # type: ignore
