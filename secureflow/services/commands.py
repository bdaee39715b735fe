"""Command surface used by the HTTP API.

Thin coordination over the services: every command validates its inputs,
delegates, and hands long-running work to the dispatcher.
"""
from datetime import timedelta
from typing import Optional
import json
import logging

from secureflow.core.clock import utcnow
from secureflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from secureflow.schemas.analysis import (
    ACTIVE_STATUSES,
    AnalysisJob,
    ApprovalDecision,
    ApprovalResponse,
    JobFilter,
    ProjectHistory,
    TriggerSource,
)
from secureflow.schemas.notification import NotificationPage, NotificationStats
from secureflow.schemas.project import ProjectCreate, ProjectScanConfig, ProjectUpdate, ScanCadence
from secureflow.services.dispatcher import JobDispatcher
from secureflow.services.job_store import JobStore
from secureflow.services.notification_service import NotificationService
from secureflow.services.orchestrator import average_score
from secureflow.services.project_service import ProjectService
from secureflow.services.remediation_service import RemediationWorkflow
from secureflow.services.scheduler import ScanScheduler, ScheduledRunReport
from secureflow.services.webhook_service import WebhookIngestor, WebhookResult

logger = logging.getLogger(__name__)


class AnalysisCommands:
    def __init__(
        self,
        store: JobStore,
        projects: ProjectService,
        remediation: RemediationWorkflow,
        scheduler: ScanScheduler,
        webhooks: WebhookIngestor,
        dispatcher: JobDispatcher,
        notifications: NotificationService,
    ):
        self._store = store
        self._projects = projects
        self._remediation = remediation
        self._scheduler = scheduler
        self._webhooks = webhooks
        self._dispatcher = dispatcher
        self._notifications = notifications

    # --- projects ---
    async def create_project(self, data: ProjectCreate, owner_id: str) -> ProjectScanConfig:
        project = await self._projects.create_project(data, owner_id)
        try:
            await self._notifications.project_created(owner_id, project.id, project.name)
        except Exception as exc:
            logger.warning("Notification for new project %s failed: %s", project.id, exc)
        return project

    async def list_projects(self, owner_id: Optional[str] = None) -> list[ProjectScanConfig]:
        return await self._projects.list_projects(owner_id=owner_id)

    async def get_project(self, project_id: str) -> ProjectScanConfig:
        project = await self._projects.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def _owned_project(self, project_id: str, owner_id: str) -> ProjectScanConfig:
        project = await self.get_project(project_id)
        if project.owner_id != owner_id:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def update_project(self, project_id: str, data: ProjectUpdate, owner_id: str) -> ProjectScanConfig:
        """Change name, tracked branch or cadence. Jobs already created are unaffected."""
        await self._owned_project(project_id, owner_id)
        project = await self._projects.update_project(project_id, data)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def delete_project(self, project_id: str, owner_id: str) -> None:
        """
        Remove a project. Its past jobs and history stay readable.

        Raises:
            StateConflictError: a job for the project is still pending or running
        """
        await self._owned_project(project_id, owner_id)
        active = await self._store.list_jobs(
            JobFilter(project_id=project_id, statuses=list(ACTIVE_STATUSES), limit=1)
        )
        if active:
            raise StateConflictError(f"Project {project_id} has analysis {active[0].id} in progress")
        if not await self._projects.delete_project(project_id):
            raise NotFoundError(f"Project {project_id} not found")

    async def regenerate_webhook_secret(self, project_id: str, owner_id: str) -> ProjectScanConfig:
        await self._owned_project(project_id, owner_id)
        project = await self._projects.regenerate_webhook_secret(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def regenerate_webhook_secret_for_repository(
        self, repository_project_id: str, owner_id: str
    ) -> ProjectScanConfig:
        project = await self._projects.find_by_repository_id(repository_project_id)
        if project is None:
            raise NotFoundError(f"No project for repository {repository_project_id}")
        return await self.regenerate_webhook_secret(project.id, owner_id)

    # --- jobs ---
    async def start_job(self, project_id: str, user_id: str, ref: Optional[str] = None) -> AnalysisJob:
        """Create a manual job and run it in the background."""
        await self.get_project(project_id)
        job = await self._store.create_job(
            project_id=project_id,
            user_id=user_id,
            triggered_by=TriggerSource.MANUAL,
            commit_ref=ref or "latest",
        )
        self._dispatcher.submit(job.id)
        return job

    async def get_job(self, job_id: str) -> AnalysisJob:
        job = await self._store.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def list_jobs(self, project_id: str, limit: int = 10) -> list[AnalysisJob]:
        if limit < 1:
            raise ValidationError("limit must be positive")
        return await self._store.list_jobs(JobFilter(project_id=project_id, limit=limit))

    async def project_history(self, project_id: str, days: int = 30) -> ProjectHistory:
        if days < 1:
            raise ValidationError("days must be positive")
        await self.get_project(project_id)
        entries = await self._store.list_history(project_id, start=utcnow() - timedelta(days=days))
        return ProjectHistory(
            project_id=project_id,
            entries=entries,
            average_score=average_score([e.security_score for e in entries]) if entries else None,
            latest_score=entries[-1].security_score if entries else None,
            total_new_vulnerabilities=sum(e.new_vulnerabilities for e in entries),
            total_resolved_vulnerabilities=sum(e.resolved_vulnerabilities for e in entries),
        )

    # --- approval ---
    async def submit_approval(
        self,
        job_id: str,
        decision: ApprovalDecision,
        selected_action_ids: Optional[list[str]] = None,
        comments: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> ApprovalResponse:
        approved = await self._remediation.decide(job_id, decision, selected_action_ids, comments, actor)
        if approved:
            self._dispatcher.submit_remediation(job_id, approved)
        job = await self.get_job(job_id)
        return ApprovalResponse(
            job_id=job_id,
            status=job.human_approval.status,
            approved_actions=approved,
            remediation_started=bool(approved),
        )

    # --- triggers ---
    async def trigger_scheduled_run(self, cadence: ScanCadence) -> ScheduledRunReport:
        if cadence not in (ScanCadence.DAILY, ScanCadence.WEEKLY):
            raise ValidationError("cadence must be DAILY or WEEKLY")
        return await self._scheduler.trigger_manual_run(cadence)

    async def receive_push_webhook(self, signature_header: Optional[str], raw_payload: bytes) -> WebhookResult:
        try:
            parsed = json.loads(raw_payload)
        except ValueError as exc:
            raise ValidationError("Webhook payload is not valid JSON") from exc
        if not isinstance(parsed, dict):
            raise ValidationError("Webhook payload must be a JSON object")
        return await self._webhooks.handle_push_event(signature_header, raw_payload, parsed)

    # --- notifications ---
    async def list_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
        project_id: Optional[str] = None,
    ) -> NotificationPage:
        return await self._notifications.list_for_user(user_id, page, limit, unread_only, project_id)

    async def mark_notifications_read(
        self,
        user_id: str,
        notification_ids: Optional[list[str]] = None,
        mark_all: bool = False,
    ) -> int:
        return await self._notifications.mark_read(user_id, notification_ids, mark_all)

    async def notification_stats(self, user_id: str) -> NotificationStats:
        return await self._notifications.stats(user_id)
