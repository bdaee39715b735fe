"""Periodic scan scheduler for DAILY and WEEKLY projects."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
import asyncio
import logging

from secureflow.core.clock import utcnow
from secureflow.core.config import Settings, settings as default_settings
from secureflow.core.exceptions import ValidationError
from secureflow.core.interfaces import JobDispatch
from secureflow.schemas.analysis import ACTIVE_STATUSES, JobFilter, JobStatus, TriggerSource
from secureflow.schemas.project import ProjectScanConfig, ScanCadence
from secureflow.services.job_store import JobStore
from secureflow.services.project_service import ProjectService

logger = logging.getLogger(__name__)

SCHEDULED_CADENCES = (ScanCadence.DAILY, ScanCadence.WEEKLY)


@dataclass
class ScheduledRunReport:
    cadence: ScanCadence
    enqueued: list[str] = field(default_factory=list)   # job ids
    skipped: list[str] = field(default_factory=list)    # project ids
    failed: list[str] = field(default_factory=list)     # project ids


def next_fire_time(cadence: ScanCadence, after: datetime, settings: Settings = default_settings) -> datetime:
    """First scheduled slot strictly after `after` (UTC)."""
    if cadence == ScanCadence.DAILY:
        candidate = after.replace(hour=settings.DAILY_SCAN_HOUR, minute=0, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate
    if cadence == ScanCadence.WEEKLY:
        days_ahead = (settings.WEEKLY_SCAN_WEEKDAY - after.weekday()) % 7
        candidate = (after + timedelta(days=days_ahead)).replace(
            hour=settings.WEEKLY_SCAN_HOUR, minute=0, second=0, microsecond=0
        )
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate
    raise ValidationError(f"Cadence {cadence} is not scheduled")


class ScanScheduler:
    """Enqueues jobs for projects whose cadence is due.

    Dedup here is best effort; the orchestrator's claim on the job is what
    guarantees a single active run.
    """

    def __init__(
        self,
        store: JobStore,
        projects: ProjectService,
        dispatcher: JobDispatch,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._projects = projects
        self._dispatcher = dispatcher
        self._settings = settings
        self._clock = clock
        self._tasks: dict[ScanCadence, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def freshness_window(self, cadence: ScanCadence) -> timedelta:
        if cadence == ScanCadence.DAILY:
            return timedelta(hours=self._settings.DAILY_FRESHNESS_HOURS)
        if cadence == ScanCadence.WEEKLY:
            return timedelta(days=self._settings.WEEKLY_FRESHNESS_DAYS)
        raise ValidationError(f"Cadence {cadence} is not scheduled")

    def start(self) -> None:
        """Start one background loop per scheduled cadence. Needs a running event loop."""
        if self._tasks:
            logger.warning("Scan scheduler already running")
            return
        for cadence in SCHEDULED_CADENCES:
            self._tasks[cadence] = asyncio.create_task(self._loop(cadence), name=f"scheduler-{cadence.value.lower()}")
        logger.info("Scan scheduler started")

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scan scheduler stopped")

    async def _loop(self, cadence: ScanCadence) -> None:
        while True:
            now = self._clock()
            fire_at = next_fire_time(cadence, now, self._settings)
            await asyncio.sleep((fire_at - now).total_seconds())
            logger.info("Running %s scheduled analyses", cadence.value)
            try:
                await self.run_due(cadence)
            except Exception:
                logger.exception("Failed to run %s scheduled analyses", cadence.value)

    async def trigger_manual_run(self, cadence: ScanCadence) -> ScheduledRunReport:
        logger.info("Manually triggering %s scheduled analyses", ScanCadence(cadence).value)
        return await self.run_due(cadence)

    async def run_due(self, cadence: ScanCadence, now: Optional[datetime] = None) -> ScheduledRunReport:
        cadence = ScanCadence(cadence)
        window = self.freshness_window(cadence)
        now = now or self._clock()
        report = ScheduledRunReport(cadence=cadence)

        projects = await self._projects.list_projects(cadence=cadence)
        logger.info("Found %d project(s) with %s scan cadence", len(projects), cadence.value)

        for project in projects:
            try:
                job_id = await self._enqueue_if_due(project, now - window, now)
            except Exception as exc:
                logger.error("Failed to enqueue scheduled analysis for project %s: %s", project.id, exc)
                report.failed.append(project.id)
                continue
            if job_id is None:
                report.skipped.append(project.id)
            else:
                report.enqueued.append(job_id)
        return report

    async def _enqueue_if_due(self, project: ProjectScanConfig, fresh_after: datetime, now: datetime) -> Optional[str]:
        active = await self._store.list_jobs(
            JobFilter(project_id=project.id, statuses=list(ACTIVE_STATUSES), limit=1)
        )
        if active:
            logger.info("Skipping project %s: analysis %s already %s", project.id, active[0].id, active[0].status.value)
            return None

        recent = await self._store.list_jobs(
            JobFilter(project_id=project.id, statuses=[JobStatus.COMPLETED], completed_after=fresh_after, limit=1)
        )
        if recent:
            logger.info("Skipping project %s: recent analysis %s found", project.id, recent[0].id)
            return None

        job = await self._store.create_job(
            project_id=project.id,
            user_id=project.owner_id,
            triggered_by=TriggerSource.SCHEDULED,
            commit_ref="latest",
        )
        # a created job must always be dispatched, or it blocks the project as in flight
        self._dispatcher.submit(job.id)
        logger.info("Triggered scheduled analysis %s for project %s (%s)", job.id, project.name, project.id)
        try:
            await self._projects.mark_scanned(project.id, now)
        except Exception as exc:
            logger.error("Failed to record last scan time for project %s: %s", project.id, exc)
        return job.id
