"""Pytest configuration and fixtures"""
from typing import Iterable, Optional
import asyncio

import pytest
import pytest_asyncio

from secureflow.agents.schemas import FileAnalysis, Finding, FixProposal
from secureflow.core.config import Settings
from secureflow.core.database import build_engine, build_session_factory, create_tables, drop_tables
from secureflow.core.exceptions import TransientExternalError
from secureflow.core.interfaces import FileEntry
from secureflow.schemas.analysis import ThreatModel
from secureflow.schemas.project import ProjectCreate, ScanCadence
from secureflow.services.job_store import JobStore
from secureflow.services.notification_service import NotificationService
from secureflow.services.orchestrator import JobOrchestrator
from secureflow.services.project_service import ProjectService
from secureflow.services.remediation_service import RemediationWorkflow

WEBHOOK_SECRET = "s3cret-webhook-key"
ADMIN_TOKEN = "test-admin-token"


class FakeRepository:
    """In-memory repository. Paths in `failing` raise on fetch, paths in `commit_failing` raise on commit."""

    def __init__(
        self,
        files: Optional[dict[str, str]] = None,
        failing: Iterable[str] = (),
        list_error: Optional[Exception] = None,
        changed: Optional[list[str]] = None,
        commit_failing: Iterable[str] = (),
    ):
        self.files = dict(files or {})
        self.failing = set(failing)
        self.list_error = list_error
        self.changed = list(changed or [])
        self.commit_failing = set(commit_failing)
        self.fetched: list[tuple[str, str]] = []
        self.branches: list[tuple[str, str]] = []
        self.commits: list[dict] = []
        self.merge_requests: list[dict] = []

    async def list_files(self, ref: str) -> list[FileEntry]:
        if self.list_error is not None:
            raise self.list_error
        return [FileEntry(path=path, size=len(content)) for path, content in self.files.items()]

    async def get_file_content(self, path: str, ref: str) -> str:
        self.fetched.append((path, ref))
        if path in self.failing:
            raise TransientExternalError(f"cannot fetch {path}")
        return self.files[path]

    async def list_changed_files(self, commit_ref: str) -> list[str]:
        return list(self.changed)

    async def create_branch(self, name: str, from_ref: str) -> None:
        self.branches.append((name, from_ref))

    async def commit_file(self, path: str, content: str, message: str, branch: str) -> str:
        if path in self.commit_failing:
            raise TransientExternalError(f"commit rejected for {path}")
        self.commits.append({"path": path, "content": content, "message": message, "branch": branch})
        return f"sha-{len(self.commits)}"

    async def open_merge_request(self, source_branch: str, target_branch: str, title: str, description: str) -> str:
        self.merge_requests.append(
            {"source": source_branch, "target": target_branch, "title": title, "description": description}
        )
        return str(len(self.merge_requests))


class FakeEngine:
    """Scripted analysis engine. `analyses` maps path to a FileAnalysis or an exception to raise.

    `delays` holds per-path sleeps so analyses can finish out of order; `fix_errors`
    maps a vulnerability type to the exception propose_fix raises for it.
    """

    def __init__(self):
        self.analyses: dict[str, object] = {}
        self.delays: dict[str, float] = {}
        self.fix_confidence = 90
        self.fix_failures: set[str] = set()
        self.fix_errors: dict[str, Exception] = {}
        self.finished: list[str] = []
        self.threat_error: Optional[Exception] = None
        self.analyze_calls: list[str] = []
        self.threat_paths: list[str] = []

    async def analyze_file(self, content: str, path: str) -> FileAnalysis:
        self.analyze_calls.append(path)
        if path in self.delays:
            await asyncio.sleep(self.delays[path])
        self.finished.append(path)
        result = self.analyses.get(path)
        if isinstance(result, Exception):
            raise result
        return result or FileAnalysis(security_score=80)

    async def propose_fix(self, file: str, code: str, vuln_type: str, severity: str) -> FixProposal:
        if vuln_type in self.fix_failures:
            raise TransientExternalError("engine unavailable")
        if vuln_type in self.fix_errors:
            raise self.fix_errors[vuln_type]
        return FixProposal(
            fixed_code=f"safe_{vuln_type}()",
            confidence=self.fix_confidence,
            description=f"Fix {vuln_type}",
        )

    async def build_threat_model(self, paths: list[str]) -> ThreatModel:
        self.threat_paths = list(paths)
        if self.threat_error is not None:
            raise self.threat_error
        return ThreatModel(nodes=[{"id": p, "type": "component"} for p in paths])


class RecordingDispatcher:
    def __init__(self):
        self.submitted: list[str] = []
        self.remediations: list[tuple[str, list[str]]] = []

    def submit(self, job_id: str) -> None:
        self.submitted.append(job_id)

    def submit_remediation(self, job_id: str, approved_action_ids) -> None:
        self.remediations.append((job_id, list(approved_action_ids)))


def finding(vuln_type: str = "sql_injection", severity: str = "LOW", line: Optional[int] = 1, code: str = "") -> Finding:
    return Finding(type=vuln_type, severity=severity, line=line, code=code or None, description=f"{vuln_type} found")


def analysis(score: int, *findings: Finding) -> FileAnalysis:
    return FileAnalysis(security_score=score, vulnerabilities=list(findings))


@pytest.fixture
def test_settings() -> Settings:
    """Test configuration"""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        DEBUG=True,
        ADMIN_TOKEN=ADMIN_TOKEN,
        SCHEDULER_ENABLED=False,
        REPOSITORY_TIMEOUT_SECONDS=5,
        ENGINE_TIMEOUT_SECONDS=5,
    )


@pytest_asyncio.fixture
async def session_factory():
    """Create in-memory test database"""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(bind=engine)

    yield build_session_factory(engine)

    # Cleanup
    await drop_tables(bind=engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> JobStore:
    return JobStore(session_factory)


@pytest.fixture
def projects(session_factory) -> ProjectService:
    return ProjectService(session_factory)


@pytest.fixture
def notifications(session_factory) -> NotificationService:
    return NotificationService(session_factory)


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def analysis_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def remediation(store, projects, analysis_engine, repo) -> RemediationWorkflow:
    return RemediationWorkflow(store, projects, analysis_engine, lambda project: repo, engine_timeout=5)


@pytest.fixture
def orchestrator(store, projects, analysis_engine, repo, remediation, notifications, test_settings) -> JobOrchestrator:
    return JobOrchestrator(
        store,
        projects,
        analysis_engine,
        lambda project: repo,
        remediation,
        settings=test_settings,
        notifications=notifications,
    )


@pytest_asyncio.fixture
async def project(projects):
    """An ON_EVENT project tracking main"""
    return await projects.create_project(
        ProjectCreate(
            name="payments-api",
            repository_project_id="4242",
            branch="main",
            cadence=ScanCadence.ON_EVENT,
            webhook_secret=WEBHOOK_SECRET,
        ),
        owner_id="owner-1",
    )
