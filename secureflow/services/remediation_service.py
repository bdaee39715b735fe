"""Remediation workflow: propose fixes, record the human decision, apply approved fixes."""
from typing import Iterable, Optional
from uuid import uuid4
import asyncio
import logging
import re

from secureflow.core.clock import utcnow
from secureflow.core.exceptions import (
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from secureflow.core.interfaces import AnalysisEngine, RepositoryClient, RepositoryFactory
from secureflow.schemas.analysis import (
    AnalysisJob,
    ApprovalDecision,
    ApprovalStatus,
    HumanApproval,
    JobStatus,
    ProposedRemediationAction,
    RemediationResult,
    RemediationType,
    Risk,
    Severity,
    Vulnerability,
)
from secureflow.services.job_store import JobStore
from secureflow.services.project_service import ProjectService

logger = logging.getLogger(__name__)

AUTOMATION_CONFIDENCE = 80
LOW_CONFIDENCE = 60

_REMEDIATION_TYPES = {
    "sql_injection": RemediationType.CODE_FIX,
    "xss": RemediationType.CODE_FIX,
    "csrf": RemediationType.CODE_FIX,
    "insecure_dependency": RemediationType.DEPENDENCY_UPDATE,
    "hardcoded_secret": RemediationType.CODE_FIX,
    "insecure_config": RemediationType.CONFIG_CHANGE,
    "path_traversal": RemediationType.CODE_FIX,
    "command_injection": RemediationType.CODE_FIX,
}


def remediation_type_for(vuln_type: str) -> RemediationType:
    return _REMEDIATION_TYPES.get(vuln_type.strip().lower(), RemediationType.CODE_FIX)


def estimate_risk(severity: Severity, confidence: int) -> Risk:
    if confidence < LOW_CONFIDENCE:
        return Risk.HIGH
    if severity in (Severity.CRITICAL, Severity.HIGH):
        return Risk.MEDIUM
    return Risk.LOW


def apply_code_change(content: str, original_code: str, proposed_code: str, line: Optional[int] = None) -> str:
    """
    Replace one line (1-based) with the proposed code, or fall back to replacing
    the first occurrence of the original snippet.

    Raises:
        ValueError: if neither the line nor the original snippet can be located
    """
    lines = content.split("\n")
    if line and 1 <= line <= len(lines):
        replacement = proposed_code
        if "\n" not in proposed_code and proposed_code == proposed_code.lstrip():
            current = lines[line - 1]
            replacement = current[: len(current) - len(current.lstrip())] + proposed_code
        lines[line - 1] = replacement
        return "\n".join(lines)
    if original_code and original_code in content:
        return content.replace(original_code, proposed_code, 1)
    raise ValueError("original code not found in file")


def _slug(path: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "-", path).strip("-").lower()[:40]


class RemediationWorkflow:
    def __init__(
        self,
        store: JobStore,
        projects: ProjectService,
        engine: AnalysisEngine,
        repository_factory: RepositoryFactory,
        engine_timeout: float = 120.0,
    ):
        self._store = store
        self._projects = projects
        self._engine = engine
        self._repository_factory = repository_factory
        self._engine_timeout = engine_timeout

    # --- proposals ---
    async def propose_actions(
        self,
        vulnerabilities: Iterable[Vulnerability],
        files: Optional[dict[str, str]] = None,
    ) -> list[ProposedRemediationAction]:
        """One proposed action per vulnerability the engine could fix; failures are skipped."""
        files = files or {}
        vulnerabilities = list(vulnerabilities)
        actions: list[ProposedRemediationAction] = []
        errors = 0

        for index, vuln in enumerate(vulnerabilities, start=1):
            try:
                actions.append(await self._propose_action(vuln, files))
            except asyncio.TimeoutError:
                errors += 1
                logger.warning(
                    "Fix generation timed out for %s (%s:%s) [%d/%d]",
                    vuln.type, vuln.file, vuln.line, index, len(vulnerabilities),
                )
            except Exception as exc:
                errors += 1
                logger.warning(
                    "Fix generation failed for %s (%s:%s) [%d/%d]: %s",
                    vuln.type, vuln.file, vuln.line, index, len(vulnerabilities), str(exc) or type(exc).__name__,
                )

        logger.info(
            "Generated %d remediation action(s) for %d vulnerabilities (%d failed, %d automated)",
            len(actions), len(vulnerabilities), errors, sum(1 for a in actions if a.automated),
        )
        return actions

    async def _propose_action(self, vuln: Vulnerability, files: dict[str, str]) -> ProposedRemediationAction:
        original = vuln.code or self._line_of(files.get(vuln.file), vuln.line)
        proposal = await asyncio.wait_for(
            self._engine.propose_fix(vuln.file, original, vuln.type, vuln.severity.value),
            timeout=self._engine_timeout,
        )
        return ProposedRemediationAction(
            id=f"fix_{uuid4().hex[:12]}",
            vulnerability_id=vuln.id,
            remediation_type=remediation_type_for(vuln.type),
            title=f"Fix {vuln.type} in {vuln.file}",
            description=proposal.description or f"Automated fix for {vuln.type}",
            file=vuln.file,
            line=vuln.line,
            severity=vuln.severity,
            original_code=original,
            proposed_code=proposal.fixed_code,
            confidence=proposal.confidence,
            automated=proposal.confidence > AUTOMATION_CONFIDENCE,
            estimated_risk=estimate_risk(vuln.severity, proposal.confidence),
        )

    @staticmethod
    def _line_of(content: Optional[str], line: Optional[int]) -> str:
        if not content or not line:
            return ""
        lines = content.split("\n")
        return lines[line - 1].strip() if 1 <= line <= len(lines) else ""

    # --- decision ---
    async def decide(
        self,
        job_id: str,
        decision: ApprovalDecision,
        selected_action_ids: Optional[list[str]] = None,
        comments: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> list[str]:
        """
        Record the one human decision for a job.

        Returns:
            list[str]: ids of the approved actions (empty when nothing is to be executed)

        Raises:
            NotFoundError: unknown job
            ValidationError: PARTIAL without a selection, or unknown action ids
            StateConflictError: the job is not awaiting approval or was already decided
        """
        job = await self._store.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if job.status != JobStatus.AWAITING_APPROVAL or job.human_approval.status != ApprovalStatus.PENDING:
            raise StateConflictError(f"Job {job_id} is not awaiting an approval decision")

        all_ids = [a.id for a in job.proposed_remediations]
        decision = ApprovalDecision(decision)
        if decision == ApprovalDecision.APPROVE_ALL:
            approved, status = all_ids, ApprovalStatus.APPROVED
        elif decision == ApprovalDecision.REJECT_ALL:
            approved, status = [], ApprovalStatus.REJECTED
        else:
            if selected_action_ids is None:
                raise ValidationError("PARTIAL decisions require selected_action_ids")
            unknown = set(selected_action_ids) - set(all_ids)
            if unknown:
                raise ValidationError(f"Unknown action ids: {sorted(unknown)}")
            selected = set(selected_action_ids)
            approved, status = [i for i in all_ids if i in selected], ApprovalStatus.PARTIAL

        now = utcnow()
        approval = HumanApproval(
            status=status,
            approved_actions=approved,
            rejected_actions=[i for i in all_ids if i not in set(approved)],
            actor=actor,
            decided_at=now,
            comments=comments,
        )
        values: dict = {"human_approval": approval}
        if not approved:
            values.update(status=JobStatus.COMPLETED, completed_at=now)

        updated = await self._store.update_job(
            job_id,
            values,
            expected_statuses=[JobStatus.AWAITING_APPROVAL],
            expected_approval_status=ApprovalStatus.PENDING.value,
        )
        if not updated:
            raise StateConflictError(f"Job {job_id} was already decided")

        logger.info("[job_id=%s] Approval decision %s by %s: %d approved", job_id, status.value, actor, len(approved))
        return approved

    # --- execution ---
    async def execute(self, job_id: str, approved_action_ids: Iterable[str]) -> list[RemediationResult]:
        """Apply approved actions file by file and complete the job."""
        job = await self._store.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        project = await self._projects.get_project(job.project_id)
        if project is None:
            raise NotFoundError(f"Project {job.project_id} not found")

        wanted = set(approved_action_ids)
        by_file: dict[str, list[ProposedRemediationAction]] = {}
        for action in job.proposed_remediations:
            if action.id in wanted:
                by_file.setdefault(action.file, []).append(action)

        base_ref = project.branch if job.commit_ref == "latest" else job.commit_ref
        logger.info("[job_id=%s] Executing %d approved action(s) across %d file(s)", job_id, len(wanted), len(by_file))

        repo = self._repository_factory(project)
        results: list[RemediationResult] = []
        try:
            for path, actions in by_file.items():
                try:
                    results.extend(await self._apply_file(repo, job, path, actions, base_ref, project.branch))
                except Exception as exc:
                    logger.error("[job_id=%s] Remediation batch for %s failed: %s", job_id, path, exc)
                    results.extend(
                        RemediationResult(action_id=a.id, success=False, error=str(exc)) for a in actions
                    )
        finally:
            close = getattr(repo, "aclose", None)
            if close is not None:
                await close()

        completed = await self._store.update_job(
            job_id,
            {"status": JobStatus.COMPLETED, "completed_at": utcnow(), "remediation_results": results},
            expected_statuses=[JobStatus.AWAITING_APPROVAL],
        )
        if not completed:
            logger.warning("[job_id=%s] Job left AWAITING_APPROVAL during remediation; results not recorded", job_id)
        return results

    async def _apply_file(
        self,
        repo: RepositoryClient,
        job: AnalysisJob,
        path: str,
        actions: list[ProposedRemediationAction],
        base_ref: str,
        target_branch: str,
    ) -> list[RemediationResult]:
        content = await repo.get_file_content(path, base_ref)

        results: dict[str, RemediationResult] = {}
        applied: list[ProposedRemediationAction] = []
        edited_lines: set[int] = set()
        # bottom-up so earlier edits don't shift later line numbers
        for action in sorted(actions, key=lambda a: a.line or 0, reverse=True):
            if action.line and action.line in edited_lines:
                results[action.id] = RemediationResult(
                    action_id=action.id,
                    success=False,
                    error=f"line {action.line} is already changed by another approved action",
                )
                continue
            try:
                content = apply_code_change(content, action.original_code, action.proposed_code, action.line)
            except ValueError as exc:
                results[action.id] = RemediationResult(action_id=action.id, success=False, error=str(exc))
                continue
            applied.append(action)
            if action.line:
                edited_lines.add(action.line)

        if applied:
            branch = f"fix/security-remediation-{job.id[:8]}-{_slug(path)}-{uuid4().hex[:6]}"
            await repo.create_branch(branch, base_ref)
            fixes = "\n".join(f"- {a.title}" for a in applied)
            commit_ref = await repo.commit_file(
                path,
                content,
                f"Security remediation: Fix {len(applied)} issue(s) in {path}\n\nApplied automated fixes for:\n{fixes}",
                branch,
            )
            mr_ref = await repo.open_merge_request(
                branch,
                target_branch,
                f"Security Remediation: {len(applied)} fixes in {path}",
                self._merge_request_description(applied),
            )
            for action in applied:
                results[action.id] = RemediationResult(
                    action_id=action.id, success=True, commit_ref=commit_ref, merge_request_ref=mr_ref
                )
            logger.info("[job_id=%s] Opened merge request %s for %s on %s", job.id, mr_ref, path, branch)

        return [results[a.id] for a in actions]

    @staticmethod
    def _merge_request_description(actions: list[ProposedRemediationAction]) -> str:
        changes = "\n".join(
            f"- **{a.title}**\n"
            f"  - Severity: {a.severity.value}\n"
            f"  - Confidence: {a.confidence}%\n"
            f"  - File: `{a.file}`\n"
            f"  - Line: {a.line or 'N/A'}"
            for a in actions
        )
        return (
            "## Security Remediation\n\n"
            "This merge request contains automated security fixes approved by a human reviewer.\n\n"
            f"### Changes Applied:\n{changes}\n\n"
            "### Review Notes:\n"
            "- Please review the changes carefully before merging\n"
            "- Run security scans to confirm the fixes"
        )
