"""Wires the services together for one application instance."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from secureflow.agents.analysis_engine import LLMAnalysisEngine
from secureflow.core.config import Settings, settings as default_settings
from secureflow.core.database import AsyncSessionLocal
from secureflow.core.gitlab_client import gitlab_factory
from secureflow.core.interfaces import AnalysisEngine, RepositoryFactory
from secureflow.core.llm_client import LLMClient
from secureflow.services.approval_policy import ApprovalPolicy
from secureflow.services.commands import AnalysisCommands
from secureflow.services.dispatcher import JobDispatcher
from secureflow.services.job_store import JobStore
from secureflow.services.notification_service import NotificationService
from secureflow.services.orchestrator import JobOrchestrator
from secureflow.services.project_service import ProjectService
from secureflow.services.remediation_service import RemediationWorkflow
from secureflow.services.scheduler import ScanScheduler
from secureflow.services.webhook_service import WebhookIngestor


@dataclass
class Services:
    store: JobStore
    projects: ProjectService
    notifications: NotificationService
    remediation: RemediationWorkflow
    orchestrator: JobOrchestrator
    dispatcher: JobDispatcher
    scheduler: ScanScheduler
    webhooks: WebhookIngestor
    commands: AnalysisCommands


def build_services(
    settings: Settings = default_settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    engine: Optional[AnalysisEngine] = None,
    repository_factory: Optional[RepositoryFactory] = None,
) -> Services:
    """
    Build the service graph. The engine and repository factory default to the
    LLM engine and GitLab client configured from settings.
    """
    session_factory = session_factory or AsyncSessionLocal
    engine = engine or LLMAnalysisEngine(LLMClient.from_settings(settings), timeout=settings.ENGINE_TIMEOUT_SECONDS)
    repository_factory = repository_factory or gitlab_factory(settings)

    store = JobStore(session_factory)
    projects = ProjectService(session_factory)
    notifications = NotificationService(session_factory)
    remediation = RemediationWorkflow(
        store, projects, engine, repository_factory, engine_timeout=settings.ENGINE_TIMEOUT_SECONDS
    )
    orchestrator = JobOrchestrator(
        store,
        projects,
        engine,
        repository_factory,
        remediation,
        approval_policy=ApprovalPolicy.from_settings(settings),
        settings=settings,
        notifications=notifications,
    )
    dispatcher = JobDispatcher(orchestrator, remediation)
    scheduler = ScanScheduler(store, projects, dispatcher, settings=settings)
    webhooks = WebhookIngestor(
        store, projects, repository_factory, dispatcher, settings=settings, notifications=notifications
    )
    commands = AnalysisCommands(store, projects, remediation, scheduler, webhooks, dispatcher, notifications)
    return Services(
        store=store,
        projects=projects,
        notifications=notifications,
        remediation=remediation,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        scheduler=scheduler,
        webhooks=webhooks,
        commands=commands,
    )
