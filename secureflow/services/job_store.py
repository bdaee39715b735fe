"""Service layer for AnalysisJob persistence, optimistic updates and history."""
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional
from uuid import uuid4
import logging

from fastapi.encoders import jsonable_encoder
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from secureflow.models.analysis_job import AnalysisJob as AnalysisJobRow
from secureflow.models.history import JobHistory
from secureflow.schemas.analysis import (
    FINISHED_PROGRESS,
    STAGE_PROGRESS,
    AnalysisJob,
    HistoryEntry,
    HumanApproval,
    JobFilter,
    JobStatus,
    Stage,
    TriggerSource,
)

logger = logging.getLogger(__name__)

_JSON_COLUMNS = {
    "vulnerabilities",
    "threat_model",
    "proposed_remediations",
    "human_approval",
    "remediation_results",
    "history",
    "changed_files",
    "compliance_score",
}


def _serialize(values: dict[str, Any]) -> dict[str, Any]:
    """Turn schema objects into column values and derive progress from stage/status."""
    if "progress" in values:
        raise ValueError("progress is derived from stage and cannot be set directly")

    row: dict[str, Any] = {}
    for key, value in values.items():
        if key in _JSON_COLUMNS:
            row[key] = jsonable_encoder(value, by_alias=False) if value is not None else None
        elif isinstance(value, Enum):
            row[key] = value.value
        else:
            row[key] = value

    if "human_approval" in values and values["human_approval"] is not None:
        approval = values["human_approval"]
        status = approval.status if isinstance(approval, HumanApproval) else approval["status"]
        row["approval_status"] = status.value if isinstance(status, Enum) else status

    stage = values.get("stage")
    status = values.get("status")
    if stage is not None:
        row["progress"] = STAGE_PROGRESS[Stage(stage)]
    elif status is not None and JobStatus(status) in (JobStatus.AWAITING_APPROVAL, JobStatus.COMPLETED):
        row["progress"] = FINISHED_PROGRESS
        row["stage"] = None
    return row


class JobStore:
    """Durable job records with status-conditioned (compare-and-set) updates."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_job(
        self,
        project_id: str,
        user_id: str,
        triggered_by: TriggerSource,
        commit_ref: str = "latest",
        changed_files: Optional[list[str]] = None,
    ) -> AnalysisJob:
        row = AnalysisJobRow(
            id=str(uuid4()),
            project_id=project_id,
            user_id=user_id,
            commit_ref=commit_ref or "latest",
            status=JobStatus.PENDING.value,
            progress=0,
            triggered_by=TriggerSource(triggered_by).value,
            vulnerabilities=[],
            proposed_remediations=[],
            human_approval=jsonable_encoder(HumanApproval()),
            approval_status="PENDING",
            remediation_results=[],
            history=[],
            changed_files=list(changed_files or []),
            compliance_score={},
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        logger.info("[job_id=%s] Created %s job for project %s at %s", row.id, row.triggered_by, project_id, row.commit_ref)
        return AnalysisJob.model_validate(row)

    async def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        async with self._session_factory() as session:
            result = await session.execute(select(AnalysisJobRow).where(AnalysisJobRow.id == job_id))
            row = result.scalars().first()
            return AnalysisJob.model_validate(row) if row else None

    async def update_job(
        self,
        job_id: str,
        values: dict[str, Any],
        expected_statuses: Optional[Iterable[JobStatus]] = None,
        expected_approval_status: Optional[str] = None,
        history: Optional[HistoryEntry] = None,
    ) -> bool:
        """
        Apply a partial update if the job still matches the preconditions.

        Args:
            job_id: Job to update
            values: Column values; schema objects are serialized
            expected_statuses: Current status must be one of these
            expected_approval_status: Current approval status must equal this
            history: Entry appended in the same transaction as the update

        Returns:
            bool: True if the row was updated, False if a precondition failed
        """
        row_values = _serialize(values)
        async with self._session_factory() as session:
            async with session.begin():
                if history is not None:
                    current = await session.execute(
                        select(AnalysisJobRow.history, AnalysisJobRow.project_id).where(AnalysisJobRow.id == job_id)
                    )
                    existing = current.first()
                    if existing is None:
                        return False
                    row_values["history"] = list(existing.history or []) + [jsonable_encoder(history)]

                stmt = update(AnalysisJobRow).where(AnalysisJobRow.id == job_id)
                if expected_statuses is not None:
                    stmt = stmt.where(AnalysisJobRow.status.in_([JobStatus(s).value for s in expected_statuses]))
                if expected_approval_status is not None:
                    stmt = stmt.where(AnalysisJobRow.approval_status == expected_approval_status)
                result = await session.execute(
                    stmt.values(**row_values).execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return False

                if history is not None:
                    session.add(self._history_row(job_id, existing.project_id, history))
        return True

    async def append_history(self, job_id: str, entry: HistoryEntry) -> bool:
        """Append a history entry without touching any other field."""
        return await self.update_job(job_id, {}, history=entry)

    async def list_jobs(self, flt: Optional[JobFilter] = None) -> list[AnalysisJob]:
        flt = flt or JobFilter()
        stmt = select(AnalysisJobRow)
        if flt.project_id:
            stmt = stmt.where(AnalysisJobRow.project_id == flt.project_id)
        if flt.statuses:
            stmt = stmt.where(AnalysisJobRow.status.in_([s.value for s in flt.statuses]))
        if flt.triggered_by:
            stmt = stmt.where(AnalysisJobRow.triggered_by == flt.triggered_by.value)
        if flt.completed_after:
            stmt = stmt.where(AnalysisJobRow.completed_at >= flt.completed_after)
        if flt.completed_before:
            stmt = stmt.where(AnalysisJobRow.completed_at < flt.completed_before)
        if flt.exclude_job_id:
            stmt = stmt.where(AnalysisJobRow.id != flt.exclude_job_id)
        if flt.order_by_completed:
            stmt = stmt.order_by(AnalysisJobRow.completed_at.desc())
        else:
            stmt = stmt.order_by(AnalysisJobRow.created_at.desc())
        stmt = stmt.limit(flt.limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [AnalysisJob.model_validate(row) for row in result.scalars().all()]

    async def list_history(
        self,
        project_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[HistoryEntry]:
        """History entries for a project, oldest first, within [start, end)."""
        stmt = select(JobHistory).where(JobHistory.project_id == project_id)
        if start:
            stmt = stmt.where(JobHistory.timestamp >= start)
        if end:
            stmt = stmt.where(JobHistory.timestamp < end)
        stmt = stmt.order_by(JobHistory.timestamp.asc(), JobHistory.id.asc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [HistoryEntry.model_validate(row) for row in result.scalars().all()]

    @staticmethod
    def _history_row(job_id: str, project_id: str, entry: HistoryEntry) -> JobHistory:
        return JobHistory(
            job_id=job_id,
            project_id=project_id,
            timestamp=entry.timestamp,
            security_score=entry.security_score,
            threat_level=entry.threat_level.value,
            vulnerability_count=entry.vulnerability_count,
            new_vulnerabilities=entry.new_vulnerabilities,
            resolved_vulnerabilities=entry.resolved_vulnerabilities,
            commit_ref=entry.commit_ref,
            triggered_by=entry.triggered_by.value,
        )
