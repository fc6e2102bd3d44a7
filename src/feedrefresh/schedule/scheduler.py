"""Scheduler process for periodic feed refreshes.

This module provides the RefreshScheduler class, which owns the periodic
scheduling pass (run on APScheduler), the worker pool that drains the job
queue, and their lifecycle.
"""

from datetime import datetime, timedelta
import logging
import time
from typing import Any

from ..logging_config import log_context
from ..pipeline import RefreshOrchestrator, WorkerPool
from ..queue import JobQueue
from .apscheduler_core import APSchedulerCore, ScheduledTask

logger = logging.getLogger(__name__)

SCHEDULING_PASS_JOB_ID = "refresh_scheduling_pass"


class RefreshScheduler:
    """Run the refresh pipeline: periodic scheduling passes plus workers.

    Attributes:
        _queue: The job queue shared by orchestrator and workers.
        _orchestrator: Produces refresh jobs for due feeds.
        _worker_pool: Consumes refresh jobs.
        _refresh_interval: Time between scheduling passes.
        _scheduler: APSchedulerCore instance.
        _task: Handle of the periodic scheduling pass, while started.
    """

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: RefreshOrchestrator,
        worker_pool: WorkerPool,
        refresh_interval: timedelta = timedelta(minutes=15),
    ):
        if refresh_interval <= timedelta(0):
            raise ValueError(
                f"refresh_interval must be positive, got {refresh_interval}"
            )
        self._queue = queue
        self._orchestrator = orchestrator
        self._worker_pool = worker_pool
        self._refresh_interval = refresh_interval
        self._scheduler = APSchedulerCore()
        self._task: ScheduledTask | None = None

        self._scheduler.add_job_executed_listener(self._job_executed_callback)
        self._scheduler.add_job_failed_listener(self._job_failed_callback)
        self._scheduler.add_job_missed_listener(self._job_missed_callback)

        logger.debug(
            "RefreshScheduler initialized.",
            extra={"refresh_interval_seconds": refresh_interval.total_seconds()},
        )

    async def start(self) -> ScheduledTask:
        """Start the workers and the periodic scheduling pass.

        The first pass runs immediately, then once per refresh interval.

        Returns:
            The handle of the periodic scheduling pass.

        Raises:
            RuntimeError: If the scheduler is already started.
        """
        if self._task is not None:
            raise RuntimeError("RefreshScheduler is already started")

        self._worker_pool.start()
        if not self._scheduler.running:
            self._scheduler.start()
        self._task = self._scheduler.schedule_interval_job(
            SCHEDULING_PASS_JOB_ID,
            self._refresh_interval,
            self._run_scheduling_pass,
            run_immediately=True,
        )
        logger.info(
            "Refresh scheduler started.",
            extra={
                "refresh_interval_seconds": self._refresh_interval.total_seconds(),
                "worker_concurrency": self._worker_pool.concurrency,
            },
        )
        return self._task

    async def trigger_now(self) -> int | None:
        """Run one scheduling pass now, outside the periodic schedule.

        Returns:
            Number of jobs enqueued, or None if the pass failed.
        """
        return await self._run_scheduling_pass()

    async def stop(self, wait_for_jobs: bool = True) -> None:
        """Stop the scheduler gracefully.

        Args:
            wait_for_jobs: Whether to let in-flight refreshes finish.
        """
        if not self.running:
            logger.debug("Scheduler is not running, nothing to stop.")
            return

        logger.info("Stopping refresh scheduler.", extra={"wait_for_jobs": wait_for_jobs})
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        await self._worker_pool.stop(wait_for_jobs=wait_for_jobs)
        logger.info("Refresh scheduler stopped.")

    @property
    def running(self) -> bool:
        """Check if the scheduler is currently running.

        Returns:
            True if the periodic pass or the workers are running.
        """
        return self._scheduler.running or self._worker_pool.running

    async def _run_scheduling_pass(self) -> int | None:
        context_id = f"pass-{int(time.time())}"
        with log_context(context_id):
            scheduled = await self._orchestrator.run_scheduling_pass()
            counts = await self._queue.counts()
            logger.debug(
                "Queue state after scheduling pass.",
                extra={state.value.lower(): count for state, count in counts.items()},
            )
            return scheduled

    @staticmethod
    def _job_executed_callback(
        job_id: str, scheduled_run_time: datetime, retval: Any
    ) -> None:
        logger.debug(
            "Scheduled pass finished.",
            extra={
                "job_id": job_id,
                "scheduled_run_time": scheduled_run_time.isoformat(),
                "scheduled_count": retval,
            },
        )

    @staticmethod
    def _job_failed_callback(
        job_id: str, scheduled_run_time: datetime, exception: BaseException
    ) -> None:
        logger.error(
            "Scheduled job failed with error.",
            extra={
                "job_id": job_id,
                "scheduled_run_time": scheduled_run_time.isoformat(),
                "exception_type": type(exception).__name__,
            },
            exc_info=exception,
        )

    @staticmethod
    def _job_missed_callback(job_id: str, scheduled_run_time: datetime) -> None:
        logger.warning(
            "Scheduled job missed execution window.",
            extra={
                "job_id": job_id,
                "scheduled_run_time": scheduled_run_time.isoformat(),
            },
        )
