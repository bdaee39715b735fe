"""Tests for job persistence"""
from datetime import timedelta

import pytest

from secureflow.core.clock import utcnow
from secureflow.schemas.analysis import (
    ApprovalStatus,
    HistoryEntry,
    JobFilter,
    JobStatus,
    Severity,
    Stage,
    TriggerSource,
)


def _entry(timestamp, score: int = 70) -> HistoryEntry:
    return HistoryEntry(
        timestamp=timestamp,
        security_score=score,
        threat_level=Severity.MEDIUM,
        vulnerability_count=2,
        new_vulnerabilities=1,
        resolved_vulnerabilities=0,
        commit_ref="latest",
        triggered_by=TriggerSource.MANUAL,
    )


@pytest.mark.asyncio
async def test_create_job_defaults(store):
    job = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)

    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert job.stage is None
    assert job.commit_ref == "latest"
    assert job.human_approval.status == ApprovalStatus.PENDING
    assert job.vulnerabilities == []
    assert await store.get_job(job.id) is not None


@pytest.mark.asyncio
async def test_get_missing_job(store):
    assert await store.get_job("missing") is None


@pytest.mark.asyncio
async def test_conditional_update_only_from_expected_status(store):
    job = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)

    claimed = await store.update_job(
        job.id, {"status": JobStatus.IN_PROGRESS}, expected_statuses=[JobStatus.PENDING]
    )
    again = await store.update_job(
        job.id, {"status": JobStatus.IN_PROGRESS}, expected_statuses=[JobStatus.PENDING]
    )

    assert claimed is True
    assert again is False
    assert (await store.get_job(job.id)).status == JobStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_progress_follows_stage(store):
    job = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)

    await store.update_job(job.id, {"status": JobStatus.IN_PROGRESS, "stage": Stage.AI_ANALYSIS})
    assert (await store.get_job(job.id)).progress == 60

    await store.update_job(job.id, {"status": JobStatus.COMPLETED})
    done = await store.get_job(job.id)
    assert done.progress == 100
    assert done.stage is None


@pytest.mark.asyncio
async def test_progress_cannot_be_written_directly(store):
    job = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)

    with pytest.raises(ValueError):
        await store.update_job(job.id, {"progress": 50})


@pytest.mark.asyncio
async def test_history_is_appended_with_update(store):
    job = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)
    now = utcnow()

    await store.update_job(job.id, {"security_score": 70}, history=_entry(now))
    await store.append_history(job.id, _entry(now + timedelta(minutes=1), score=75))

    stored = await store.get_job(job.id)
    assert [h.security_score for h in stored.history] == [70, 75]
    assert [h.security_score for h in await store.list_history("project-1")] == [70, 75]


@pytest.mark.asyncio
async def test_history_not_written_when_update_rejected(store):
    job = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)

    updated = await store.update_job(
        job.id, {"security_score": 70}, expected_statuses=[JobStatus.IN_PROGRESS], history=_entry(utcnow())
    )

    assert updated is False
    assert (await store.get_job(job.id)).history == []
    assert await store.list_history("project-1") == []


@pytest.mark.asyncio
async def test_list_history_time_range(store):
    job = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)
    now = utcnow()
    for days_ago, score in ((40, 50), (10, 60), (1, 70)):
        await store.append_history(job.id, _entry(now - timedelta(days=days_ago), score))

    recent = await store.list_history("project-1", start=now - timedelta(days=30))
    window = await store.list_history("project-1", start=now - timedelta(days=30), end=now - timedelta(days=5))

    assert [h.security_score for h in recent] == [60, 70]
    assert [h.security_score for h in window] == [60]
    assert await store.list_history("other-project") == []


@pytest.mark.asyncio
async def test_list_jobs_filters(store):
    manual = await store.create_job("project-1", "user-1", TriggerSource.MANUAL)
    scheduled = await store.create_job("project-1", "user-1", TriggerSource.SCHEDULED)
    await store.create_job("project-2", "user-1", TriggerSource.MANUAL)
    await store.update_job(manual.id, {"status": JobStatus.COMPLETED, "completed_at": utcnow()})

    by_project = await store.list_jobs(JobFilter(project_id="project-1"))
    completed = await store.list_jobs(JobFilter(project_id="project-1", statuses=[JobStatus.COMPLETED]))
    active = await store.list_jobs(JobFilter(statuses=[JobStatus.PENDING]))
    excluded = await store.list_jobs(JobFilter(project_id="project-1", exclude_job_id=manual.id))

    assert {j.id for j in by_project} == {manual.id, scheduled.id}
    assert [j.id for j in completed] == [manual.id]
    assert len(active) == 2
    assert [j.id for j in excluded] == [scheduled.id]
