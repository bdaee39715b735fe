"""Job orchestrator: drives one analysis job from PENDING to a terminal state.

Pipeline (stage → progress):
- FETCHING_CODE (10): list repository files at the job's ref
- STATIC_ANALYSIS (30): fetch and analyze up to MAX_FILES_PER_JOB files
- AI_ANALYSIS (60): aggregate findings and score
- THREAT_MODELING (80): one threat-model call over the full file list
then threat level, remediation proposals, the approval gate, the delta
against the previous completed job, and one atomic final write with its
history entry.

Only the run that wins the PENDING→IN_PROGRESS compare-and-set does any
work; every later write is conditioned on the job still being IN_PROGRESS.
"""
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import uuid4
import asyncio
import logging
import math

from secureflow.core.clock import utcnow
from secureflow.core.config import Settings, settings as default_settings
from secureflow.core.exceptions import FatalJobError, StateConflictError
from secureflow.core.interfaces import AnalysisEngine, FileEntry, RepositoryClient, RepositoryFactory
from secureflow.core.security import vulnerability_fingerprint
from secureflow.schemas.analysis import (
    AnalysisJob,
    HistoryEntry,
    JobFilter,
    JobStatus,
    ProposedRemediationAction,
    Severity,
    Stage,
    Vulnerability,
)
from secureflow.services.approval_policy import ApprovalPolicy
from secureflow.services.job_store import JobStore
from secureflow.services.notification_service import NotificationService
from secureflow.services.project_service import ProjectService
from secureflow.services.remediation_service import RemediationWorkflow

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPLIANCE_OFFSETS = {"owasp": 20, "pci": 30, "sox": 25, "gdpr": 15, "iso27001": 20}


@dataclass
class FileOutcome:
    path: str
    content: str = ""
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    score: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def average_score(scores: list[int], default: int = 50) -> int:
    """Mean rounded half-up; `default` when there is nothing to average."""
    if not scores:
        return default
    return int(math.floor(sum(scores) / len(scores) + 0.5))


def max_severity(vulnerabilities: Iterable[Vulnerability]) -> Severity:
    """Highest severity present, LOW when there are none."""
    return max((v.severity for v in vulnerabilities), key=lambda s: s.rank, default=Severity.LOW)


def compliance_scores(score: int) -> dict[str, float]:
    return {name: round(max(0.0, (score - offset) / (100 - offset)), 3) for name, offset in COMPLIANCE_OFFSETS.items()}


def vulnerability_delta(
    current: list[Vulnerability],
    previous: list[Vulnerability],
    key: str = "id",
) -> tuple[int, int]:
    """(new, resolved) counts between two runs, matching findings on `key`."""
    current_keys = {getattr(v, key) for v in current}
    previous_keys = {getattr(v, key) for v in previous}
    new = sum(1 for v in current if getattr(v, key) not in previous_keys)
    resolved = sum(1 for v in previous if getattr(v, key) not in current_keys)
    return new, resolved


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        projects: ProjectService,
        engine: AnalysisEngine,
        repository_factory: RepositoryFactory,
        remediation: RemediationWorkflow,
        approval_policy: Optional[Callable[[list[ProposedRemediationAction]], bool]] = None,
        settings: Settings = default_settings,
        notifications: Optional[NotificationService] = None,
    ):
        self._store = store
        self._projects = projects
        self._engine = engine
        self._repository_factory = repository_factory
        self._remediation = remediation
        self._needs_approval = approval_policy or ApprovalPolicy.from_settings(settings)
        self._settings = settings
        self._notifications = notifications

    async def run_job(self, job_id: str) -> Optional[AnalysisJob]:
        """
        Run a job to a terminal state.

        Returns:
            The final job, or None when this call did not own the run (the job
            is missing or another run already claimed it).
        """
        claimed = await self._store.update_job(
            job_id,
            {"status": JobStatus.IN_PROGRESS, "stage": Stage.FETCHING_CODE, "started_at": utcnow()},
            expected_statuses=[JobStatus.PENDING],
        )
        if not claimed:
            logger.info("[job_id=%s] Not claimed: job missing or already started", job_id)
            return None

        logger.info("[job_id=%s] Security analysis started", job_id)
        try:
            await self._run(job_id)
        except Exception as exc:
            logger.exception("[job_id=%s] Security analysis failed: %s", job_id, exc)
            if await self._fail(job_id, exc):
                error = str(exc) or type(exc).__name__
                await self._notify(job_id, lambda n: self._failure_notice(n, job_id, error))
        return await self._store.get_job(job_id)

    async def _run(self, job_id: str) -> None:
        job = await self._store.get_job(job_id)
        if job is None:
            raise FatalJobError("Job not found")
        project = await self._projects.get_project(job.project_id)
        if project is None:
            raise FatalJobError(f"Project {job.project_id} not found")
        await self._notify(job_id, lambda n: n.analysis_started(job.user_id, project.id, job_id, project.name))

        previous = await self._previous_completed(job)
        if previous is not None:
            await self._update(job_id, {"previous_job_id": previous.id})

        ref = project.branch if job.commit_ref == "latest" else job.commit_ref
        repo = self._repository_factory(project)
        try:
            files = await self._single_shot(repo.list_files(ref), "File listing")
            logger.info("[job_id=%s] Retrieved %d files at %s", job_id, len(files), ref)
            if job.changed_files:
                changed = set(job.changed_files)
                files = [f for f in files if f.path in changed]

            await self._advance(job_id, Stage.STATIC_ANALYSIS)
            selected = files[: self._settings.MAX_FILES_PER_JOB]
            outcomes = await self._analyze_files(job_id, repo, selected, ref)
        finally:
            close = getattr(repo, "aclose", None)
            if close is not None:
                await close()

        await self._advance(job_id, Stage.AI_ANALYSIS)
        analyzed = [o for o in outcomes if o.ok]
        errors = len(outcomes) - len(analyzed)
        vulnerabilities = [v for o in analyzed for v in o.vulnerabilities]
        score = average_score([o.score for o in analyzed], self._settings.DEFAULT_FILE_SCORE)
        logger.info(
            "[job_id=%s] Analyzed %d file(s), %d error(s), %d vulnerabilities, score %d",
            job_id, len(analyzed), errors, len(vulnerabilities), score,
        )

        await self._advance(job_id, Stage.THREAT_MODELING)
        threat_model = await self._single_shot(
            self._engine.build_threat_model([f.path for f in files]),
            "Threat modeling",
            self._settings.ENGINE_TIMEOUT_SECONDS,
        )

        threat_level = max_severity(vulnerabilities)
        actions = await self._remediation.propose_actions(vulnerabilities, {o.path: o.content for o in analyzed})
        needs_approval = bool(actions) and self._needs_approval(actions)

        new, resolved = vulnerability_delta(
            vulnerabilities,
            previous.vulnerabilities if previous else [],
            self._settings.VULNERABILITY_DELTA_KEY,
        )

        now = utcnow()
        status = JobStatus.AWAITING_APPROVAL if needs_approval else JobStatus.COMPLETED
        values = {
            "status": status,
            "security_score": score,
            "threat_level": threat_level,
            "vulnerabilities": vulnerabilities,
            "threat_model": threat_model,
            "proposed_remediations": actions,
            "files_analyzed": len(analyzed),
            "analysis_errors": errors,
            "compliance_score": compliance_scores(score),
            "summary": self._summary(len(analyzed), vulnerabilities, score, threat_level, actions, needs_approval),
        }
        if status == JobStatus.COMPLETED:
            values["completed_at"] = now

        entry = HistoryEntry(
            timestamp=now,
            security_score=score,
            threat_level=threat_level,
            vulnerability_count=len(vulnerabilities),
            new_vulnerabilities=new,
            resolved_vulnerabilities=resolved,
            commit_ref=job.commit_ref,
            triggered_by=job.triggered_by,
        )
        await self._update(job_id, values, history=entry)
        logger.info(
            "[job_id=%s] Security analysis finished: %s, threat level %s, %d action(s)",
            job_id, status.value, threat_level.value, len(actions),
        )
        await self._notify(
            job_id,
            lambda n: n.analysis_completed(
                job.user_id, project.id, job_id, project.name,
                score, threat_level, len(vulnerabilities), awaiting_approval=needs_approval,
            ),
        )

    async def _analyze_files(
        self,
        job_id: str,
        repo: RepositoryClient,
        files: list[FileEntry],
        ref: str,
    ) -> list[FileOutcome]:
        semaphore = asyncio.Semaphore(max(1, self._settings.ANALYSIS_CONCURRENCY))

        async def bounded(index: int, entry: FileEntry) -> FileOutcome:
            async with semaphore:
                return await self._analyze_file(job_id, repo, entry, ref, index, len(files))

        # gather keeps input order, so scoring never depends on completion order
        return list(await asyncio.gather(*(bounded(i, f) for i, f in enumerate(files, start=1))))

    async def _analyze_file(
        self,
        job_id: str,
        repo: RepositoryClient,
        entry: FileEntry,
        ref: str,
        index: int,
        total: int,
    ) -> FileOutcome:
        try:
            content = await asyncio.wait_for(
                repo.get_file_content(entry.path, ref),
                timeout=self._settings.REPOSITORY_TIMEOUT_SECONDS,
            )
            result = await asyncio.wait_for(
                self._engine.analyze_file(content, entry.path),
                timeout=self._settings.ENGINE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("[job_id=%s] Timed out analyzing %s [%d/%d]", job_id, entry.path, index, total)
            return FileOutcome(path=entry.path, error="timeout")
        except Exception as exc:
            logger.warning("[job_id=%s] Failed to analyze %s [%d/%d]: %s", job_id, entry.path, index, total, exc)
            return FileOutcome(path=entry.path, error=str(exc) or type(exc).__name__)

        vulnerabilities = [
            Vulnerability(
                id=f"vuln_{uuid4().hex[:12]}",
                fingerprint=vulnerability_fingerprint(entry.path, finding.line, finding.type),
                file=entry.path,
                line=finding.line,
                severity=finding.severity,
                type=finding.type,
                description=finding.description,
                suggested_fix=finding.suggested_fix,
                owasp_category=finding.owasp_category,
                code=finding.code,
                confidence=finding.confidence,
                exploitability=finding.exploitability,
                impact=finding.impact,
            )
            for finding in result.vulnerabilities
        ]
        score = result.security_score
        if score is None:
            score = self._settings.DEFAULT_FILE_SCORE
        return FileOutcome(
            path=entry.path,
            content=content,
            vulnerabilities=vulnerabilities,
            score=min(max(int(score), 0), 100),
        )

    async def _previous_completed(self, job: AnalysisJob) -> Optional[AnalysisJob]:
        jobs = await self._store.list_jobs(
            JobFilter(
                project_id=job.project_id,
                statuses=[JobStatus.COMPLETED],
                exclude_job_id=job.id,
                order_by_completed=True,
                limit=1,
            )
        )
        return jobs[0] if jobs else None

    async def _single_shot(self, call: Awaitable[T], what: str, timeout: Optional[float] = None) -> T:
        """A call whose failure fails the whole job."""
        try:
            return await asyncio.wait_for(call, timeout=timeout or self._settings.REPOSITORY_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as exc:
            raise FatalJobError(f"{what} timed out") from exc

    async def _advance(self, job_id: str, stage: Stage) -> None:
        await self._update(job_id, {"stage": stage})
        logger.info("[job_id=%s] Stage %s (%d%%)", job_id, stage.value, stage.progress)

    async def _update(self, job_id: str, values: dict, history: Optional[HistoryEntry] = None) -> None:
        ok = await self._store.update_job(
            job_id, values, expected_statuses=[JobStatus.IN_PROGRESS], history=history
        )
        if not ok:
            raise StateConflictError(f"Job {job_id} is no longer IN_PROGRESS")

    async def _fail(self, job_id: str, exc: Exception) -> bool:
        failed = await self._store.update_job(
            job_id,
            {"status": JobStatus.FAILED, "error": str(exc) or type(exc).__name__, "failed_at": utcnow()},
            expected_statuses=[JobStatus.IN_PROGRESS],
        )
        if not failed:
            logger.warning("[job_id=%s] Could not mark job FAILED; it already left IN_PROGRESS", job_id)
        return failed

    async def _notify(self, job_id: str, send: Callable[[NotificationService], Awaitable]) -> None:
        """Deliver an in-app notification; a failed delivery never changes the job outcome."""
        if self._notifications is None:
            return
        try:
            await send(self._notifications)
        except Exception as exc:
            logger.warning("[job_id=%s] Notification failed: %s", job_id, exc)

    async def _failure_notice(self, notifications: NotificationService, job_id: str, error: str) -> None:
        job = await self._store.get_job(job_id)
        project = await self._projects.get_project(job.project_id)
        await notifications.analysis_failed(
            job.user_id, job.project_id, job_id, project.name if project else job.project_id, error
        )

    @staticmethod
    def _summary(
        files: int,
        vulnerabilities: list[Vulnerability],
        score: int,
        threat_level: Severity,
        actions: list[ProposedRemediationAction],
        needs_approval: bool,
    ) -> str:
        counts = {s: sum(1 for v in vulnerabilities if v.severity == s) for s in Severity}
        if score >= 80:
            posture = "Excellent security posture."
        elif score >= 60:
            posture = "Good security foundation with room for improvement."
        elif score >= 40:
            posture = "Moderate security risks; address high-priority issues."
        else:
            posture = "Significant security concerns; immediate attention required."
        if needs_approval:
            remediation = f"{len(actions)} automated fix(es) available; human approval required."
        elif actions:
            remediation = f"{len(actions)} low-risk fix(es) proposed."
        else:
            remediation = "No remediation actions proposed."
        return (
            f"Analyzed {files} file(s); found {len(vulnerabilities)} vulnerabilities "
            f"(critical {counts[Severity.CRITICAL]}, high {counts[Severity.HIGH]}, "
            f"medium {counts[Severity.MEDIUM]}, low {counts[Severity.LOW]}). "
            f"Security score {score}/100, threat level {threat_level.value}. {remediation} {posture}"
        )
