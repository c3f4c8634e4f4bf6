"""Cron-style scheduler running jobs on the asyncio event loop."""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from croniter import croniter

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Task = Callable[[], Awaitable[Any]]

# Fire times younger than this are treated as pending, not missed
MISSED_GRACE_SECONDS = 60
# Upper bound when walking back through fire times
MAX_MISSED_LOOKBACK = 10000


class InvalidCronExpression(ValueError):
    pass


@dataclass
class ScheduledJob:
    name: str
    cron_expression: str
    task: Task
    next_run: Optional[datetime] = None
    runner: Optional[asyncio.Task] = None
    last_scheduled: Optional[datetime] = None


@dataclass
class SchedulerStatus:
    is_running: bool = False
    last_check_time: Optional[datetime] = None
    next_check_time: Optional[datetime] = None
    check_count: int = 0
    missed_checks: int = 0
    job_names: list[str] = field(default_factory=list)


def next_fire_time(cron_expression: str, after: datetime) -> datetime:
    return croniter(cron_expression, after).get_next(datetime)


def count_fire_times_between(cron_expression: str, start: datetime, end: datetime) -> int:
    """Number of fire times t with start < t < end."""
    if end <= start:
        return 0
    iterator = croniter(cron_expression, end)
    count = 0
    for _ in range(MAX_MISSED_LOOKBACK):
        fire_time = iterator.get_prev(datetime)
        if fire_time <= start:
            break
        if fire_time < end:
            count += 1
    return count


class Scheduler:
    """
    Runs named jobs on cron schedules.

    Each job gets an asyncio task that computes its next fire time, sleeps
    until then and awaits the job. Job errors are logged and never stop the
    schedule. The clock and sleep function are injectable so schedules can
    be driven without wall-clock waits.

    stop() and cancel() only prevent future firings. A job that is already
    running is left to finish; drain() waits for it.
    """

    def __init__(
        self,
        clock: Clock = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self.jobs: dict[str, ScheduledJob] = {}
        self._running = False
        self._status = SchedulerStatus()
        # Runner tasks currently inside a job, and released runners still finishing one
        self._firing: set[asyncio.Task] = set()
        self._draining: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    def schedule(self, name: str, cron_expression: str, task: Task) -> ScheduledJob:
        """
        Register task under name, replacing any job with the same name.

        Raises:
            InvalidCronExpression: If the expression cannot be parsed
        """
        if not croniter.is_valid(cron_expression):
            raise InvalidCronExpression(f"Invalid cron expression: {cron_expression}")

        self.cancel(name)
        job = ScheduledJob(
            name=name,
            cron_expression=cron_expression,
            task=task,
            next_run=next_fire_time(cron_expression, self._clock()),
        )
        self.jobs[name] = job
        self._refresh_next_check()

        if self._running:
            job.runner = asyncio.create_task(self._run_job(job), name=f"scheduler-{name}")

        logger.info(f'Scheduled task "{name}" with cron expression "{cron_expression}"')
        return job

    def cancel(self, name: str) -> bool:
        job = self.jobs.pop(name, None)
        if job is None:
            return False
        self._release(job)
        self._refresh_next_check()
        logger.info(f"Cancelled scheduled task: {name}")
        return True

    def start(self) -> None:
        """Start every job loop. Must be called from a running event loop."""
        if self._running:
            logger.debug("Scheduler already running")
            return
        for job in self.jobs.values():
            if job.runner is None or job.runner.done():
                job.runner = asyncio.create_task(self._run_job(job), name=f"scheduler-{job.name}")
        self._running = True
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop every job loop; job definitions are kept for a later start()."""
        for job in self.jobs.values():
            self._release(job)
        self._running = False
        logger.info("Scheduler stopped")

    def _release(self, job: ScheduledJob) -> None:
        """Detach the job's runner. A runner mid-job exits once the job returns."""
        runner, job.runner = job.runner, None
        if runner is None or runner.done():
            return
        if runner in self._firing:
            logger.info(f'Task "{job.name}" is running; it will finish before stopping')
            self._draining.add(runner)
            runner.add_done_callback(self._draining.discard)
        else:
            runner.cancel()

    async def drain(self) -> None:
        """Wait for jobs that were running when stop() or cancel() was called."""
        if self._draining:
            await asyncio.gather(*self._draining, return_exceptions=True)

    async def _run_job(self, job: ScheduledJob) -> None:
        current = asyncio.current_task()
        job.next_run = next_fire_time(job.cron_expression, self._clock())
        while job.runner is current:
            self._refresh_next_check()
            delay = (job.next_run - self._clock()).total_seconds()
            await self._sleep(max(0.0, delay))
            if job.runner is not current:
                break
            self._firing.add(current)
            try:
                await self._fire(job, job.next_run)
            finally:
                self._firing.discard(current)

    async def _fire(self, job: ScheduledJob, scheduled_for: datetime) -> None:
        # The slot just served bounds the gap even if the timer woke early
        since = max(
            (t for t in (job.last_scheduled, self._status.last_check_time) if t is not None),
            default=None,
        )
        if since is not None:
            missed = count_fire_times_between(job.cron_expression, since, scheduled_for)
            if missed:
                logger.warning(f'Detected {missed} missed checks for task "{job.name}"')
                self._status.missed_checks += missed

        logger.debug(f"Executing scheduled task: {job.name}")
        job.last_scheduled = scheduled_for
        self._status.last_check_time = self._clock()
        self._status.check_count += 1
        try:
            await job.task()
        except Exception as e:
            logger.exception(f"Error executing scheduled task {job.name}: {e}")
        finally:
            # Never before scheduled_for, so an early wake cannot repeat the slot
            job.next_run = next_fire_time(
                job.cron_expression, max(scheduled_for, self._clock())
            )
            self._refresh_next_check()

    async def execute_now(self, name: str) -> bool:
        """Run a job immediately without touching its schedule."""
        job = self.jobs.get(name)
        if job is None:
            logger.warning(f'Cannot execute task "{name}": task not found')
            return False

        logger.info(f'Executing task "{name}" immediately')
        self._status.last_check_time = self._clock()
        self._status.check_count += 1
        try:
            await job.task()
        except Exception as e:
            logger.exception(f"Error executing task {name}: {e}")
            return False
        logger.info(f'Task "{name}" executed successfully')
        return True

    def check_missed_runs(self, now: Optional[datetime] = None) -> int:
        """
        Count fire times since the last check that never ran.

        Diagnostic only: nothing is re-run and the status counter is not
        changed. Fire times inside the grace window count as pending.
        """
        last = self._status.last_check_time
        if last is None:
            return 0
        cutoff = (now or self._clock()) - timedelta(seconds=MISSED_GRACE_SECONDS)
        total = 0
        for job in self.jobs.values():
            # +1 microsecond makes the cutoff itself inclusive
            missed = count_fire_times_between(job.cron_expression, last, cutoff + timedelta(microseconds=1))
            if missed:
                logger.warning(f'Detected {missed} missed checks for task "{job.name}"')
            total += missed
        return total

    def _refresh_next_check(self) -> None:
        upcoming = [job.next_run for job in self.jobs.values() if job.next_run is not None]
        self._status.next_check_time = min(upcoming) if upcoming else None

    def get_jobs(self) -> dict[str, dict]:
        return {
            name: {"cron_expression": job.cron_expression, "next_run": job.next_run}
            for name, job in self.jobs.items()
        }

    def get_status(self) -> SchedulerStatus:
        return replace(
            self._status,
            is_running=self._running,
            job_names=list(self.jobs.keys()),
        )
