"""Webhook ingestion for repository push events."""
from dataclasses import dataclass
from typing import Any, Optional
import asyncio
import logging

from secureflow.core.config import Settings, settings as default_settings
from secureflow.core.exceptions import AuthenticationError
from secureflow.core.interfaces import JobDispatch, RepositoryFactory
from secureflow.core.security import verify_signature
from secureflow.schemas.analysis import TriggerSource
from secureflow.schemas.project import ScanCadence
from secureflow.services.job_store import JobStore
from secureflow.services.notification_service import NotificationService
from secureflow.services.project_service import ProjectService

logger = logging.getLogger(__name__)

PUSH_EVENT = "push"


@dataclass
class WebhookResult:
    status_code: int
    message: str
    job_id: Optional[str] = None
    changed_files: int = 0


def _repository_project_id(payload: dict[str, Any]) -> Optional[str]:
    project = payload.get("project")
    project_id = payload.get("project_id")
    if project_id is None and isinstance(project, dict):
        project_id = project.get("id")
    if project_id is None or isinstance(project_id, (dict, list)):
        return None
    return str(project_id)


def _pushed_commit(payload: dict[str, Any]) -> Optional[str]:
    checkout_sha = payload.get("checkout_sha")
    if checkout_sha and isinstance(checkout_sha, str):
        return checkout_sha
    commits = payload.get("commits")
    if not isinstance(commits, list) or not commits or not isinstance(commits[-1], dict):
        return None
    commit_id = commits[-1].get("id")
    return commit_id if isinstance(commit_id, str) and commit_id else None


class WebhookIngestor:
    """Turns an authenticated push on a tracked branch into a webhook job."""

    def __init__(
        self,
        store: JobStore,
        projects: ProjectService,
        repository_factory: RepositoryFactory,
        dispatcher: JobDispatch,
        settings: Settings = default_settings,
        notifications: Optional[NotificationService] = None,
    ):
        self._store = store
        self._projects = projects
        self._repository_factory = repository_factory
        self._dispatcher = dispatcher
        self._settings = settings
        self._notifications = notifications

    async def handle_push_event(
        self,
        signature: Optional[str],
        raw_payload: bytes,
        parsed: dict[str, Any],
    ) -> WebhookResult:
        """
        Authenticate and act on one push event.

        Args:
            signature: Hex HMAC-SHA256 of the raw payload sent by the provider
            raw_payload: Request body exactly as received
            parsed: The decoded JSON body

        Returns:
            WebhookResult: 202 with the job id when a job was created, 200 when ignored

        Raises:
            AuthenticationError: the signature does not match the project's secret
        """
        repository_id = _repository_project_id(parsed)
        project = await self._projects.find_by_repository_id(repository_id) if repository_id else None
        if project is None:
            logger.info("Webhook for repository %s ignored: project not configured", repository_id)
            return WebhookResult(200, "ignored: project not configured")

        if not verify_signature(project.webhook_secret, raw_payload, signature):
            logger.warning("Invalid webhook signature for project %s", project.id)
            raise AuthenticationError("Invalid webhook signature")

        if parsed.get("object_kind") != PUSH_EVENT:
            return WebhookResult(200, f"ignored: event {parsed.get('object_kind')!r} is not a push")
        if parsed.get("ref") != f"refs/heads/{project.branch}":
            return WebhookResult(200, f"ignored: ref {parsed.get('ref')!r} is not the tracked branch")
        if project.cadence != ScanCadence.ON_EVENT:
            return WebhookResult(200, f"ignored: project scans {project.cadence.value}")

        commit = _pushed_commit(parsed)
        if not commit:
            return WebhookResult(200, "ignored: no commits in push")

        repo = self._repository_factory(project)
        try:
            changed = await asyncio.wait_for(
                repo.list_changed_files(commit),
                timeout=self._settings.REPOSITORY_TIMEOUT_SECONDS,
            )
        finally:
            close = getattr(repo, "aclose", None)
            if close is not None:
                await close()

        if not changed:
            logger.info("No code changes detected in commit %s for project %s", commit, project.id)
            return WebhookResult(200, "ignored: no code changes")

        job = await self._store.create_job(
            project_id=project.id,
            user_id=project.owner_id,
            triggered_by=TriggerSource.WEBHOOK,
            commit_ref=commit,
            changed_files=changed,
        )
        self._dispatcher.submit(job.id)
        logger.info("Started analysis %s for push %s on project %s (%d files)", job.id, commit, project.id, len(changed))
        if self._notifications is not None:
            try:
                await self._notifications.webhook_received(
                    project.owner_id, project.id, job.id, project.name, f"Push to {project.branch}"
                )
            except Exception as exc:
                logger.warning("[job_id=%s] Notification failed: %s", job.id, exc)
        return WebhookResult(202, "accepted", job_id=job.id, changed_files=len(changed))
