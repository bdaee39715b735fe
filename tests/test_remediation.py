"""Tests for remediation proposals, approval decisions and execution"""
import asyncio

import pytest

from conftest import analysis, finding
from secureflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from secureflow.schemas.analysis import (
    ApprovalDecision,
    ApprovalStatus,
    JobStatus,
    RemediationType,
    Risk,
    Severity,
    TriggerSource,
    Vulnerability,
)
from secureflow.services.remediation_service import apply_code_change, estimate_risk, remediation_type_for

VULNERABLE_FILE = "import db\n\ndef find(user):\n    query = 'SELECT * FROM t WHERE u=' + user\n    return db.run(query)\n"


async def _awaiting_job(orchestrator, store, project, repo, analysis_engine):
    repo.files = {"app/db.py": VULNERABLE_FILE, "app/views.py": "render(x)\n"}
    analysis_engine.analyses = {
        "app/db.py": analysis(30, finding("sql_injection", "HIGH", 4)),
        "app/views.py": analysis(60, finding("xss", "MEDIUM", 1)),
    }
    job = await store.create_job(project.id, "user-1", TriggerSource.MANUAL)
    result = await orchestrator.run_job(job.id)
    assert result.status == JobStatus.AWAITING_APPROVAL
    return result


def test_estimate_risk():
    assert estimate_risk(Severity.LOW, 50) == Risk.HIGH
    assert estimate_risk(Severity.CRITICAL, 90) == Risk.MEDIUM
    assert estimate_risk(Severity.HIGH, 60) == Risk.MEDIUM
    assert estimate_risk(Severity.MEDIUM, 95) == Risk.LOW


def test_remediation_type_for():
    assert remediation_type_for("insecure_dependency") == RemediationType.DEPENDENCY_UPDATE
    assert remediation_type_for("INSECURE_CONFIG") == RemediationType.CONFIG_CHANGE
    assert remediation_type_for("something_new") == RemediationType.CODE_FIX


def test_apply_code_change_keeps_indentation():
    content = "def f():\n    x = eval(data)\n    return x"

    updated = apply_code_change(content, "x = eval(data)", "x = json.loads(data)", line=2)

    assert updated == "def f():\n    x = json.loads(data)\n    return x"


def test_apply_code_change_falls_back_to_text():
    content = "a = 1\nb = unsafe(a)\n"

    assert apply_code_change(content, "unsafe(a)", "safe(a)") == "a = 1\nb = safe(a)\n"
    assert apply_code_change(content, "unsafe(a)", "safe(a)", line=99) == "a = 1\nb = safe(a)\n"


def test_apply_code_change_missing_original():
    with pytest.raises(ValueError):
        apply_code_change("a = 1\n", "not there", "b = 2")


@pytest.mark.asyncio
async def test_propose_actions_uses_file_line_when_no_snippet(remediation, analysis_engine):
    vuln = Vulnerability(id="v1", fingerprint="fp", file="a.py", line=2, type="xss", severity="HIGH")

    actions = await remediation.propose_actions([vuln], {"a.py": "x = 1\n    render(user_input)\n"})

    assert len(actions) == 1
    action = actions[0]
    assert action.vulnerability_id == "v1"
    assert action.original_code == "render(user_input)"
    assert action.proposed_code == "safe_xss()"
    assert action.confidence == 90
    assert action.automated is True
    assert action.estimated_risk == Risk.MEDIUM


@pytest.mark.asyncio
async def test_propose_actions_low_confidence(remediation, analysis_engine):
    analysis_engine.fix_confidence = 55
    vuln = Vulnerability(id="v1", fingerprint="fp", file="a.py", line=1, type="csrf", severity="LOW", code="x")

    actions = await remediation.propose_actions([vuln])

    assert actions[0].automated is False
    assert actions[0].estimated_risk == Risk.HIGH


@pytest.mark.asyncio
async def test_approve_all(orchestrator, remediation, store, project, repo, analysis_engine):
    job = await _awaiting_job(orchestrator, store, project, repo, analysis_engine)
    all_ids = [a.id for a in job.proposed_remediations]

    approved = await remediation.decide(job.id, ApprovalDecision.APPROVE_ALL, comments="ship it", actor="reviewer")

    assert approved == all_ids
    stored = await store.get_job(job.id)
    assert stored.status == JobStatus.AWAITING_APPROVAL
    assert stored.human_approval.status == ApprovalStatus.APPROVED
    assert stored.human_approval.actor == "reviewer"
    assert stored.human_approval.comments == "ship it"
    assert stored.human_approval.decided_at is not None


@pytest.mark.asyncio
async def test_second_decision_is_rejected(orchestrator, remediation, store, project, repo, analysis_engine):
    job = await _awaiting_job(orchestrator, store, project, repo, analysis_engine)
    await remediation.decide(job.id, ApprovalDecision.APPROVE_ALL, actor="first")

    with pytest.raises(StateConflictError):
        await remediation.decide(job.id, ApprovalDecision.REJECT_ALL, actor="second")

    stored = await store.get_job(job.id)
    assert stored.human_approval.status == ApprovalStatus.APPROVED
    assert stored.human_approval.actor == "first"


@pytest.mark.asyncio
async def test_reject_all_completes_job(orchestrator, remediation, store, project, repo, analysis_engine):
    job = await _awaiting_job(orchestrator, store, project, repo, analysis_engine)

    approved = await remediation.decide(job.id, ApprovalDecision.REJECT_ALL)

    assert approved == []
    stored = await store.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.completed_at is not None
    assert stored.human_approval.status == ApprovalStatus.REJECTED
    assert len(stored.human_approval.rejected_actions) == 2


@pytest.mark.asyncio
async def test_partial_decision(orchestrator, remediation, store, project, repo, analysis_engine):
    job = await _awaiting_job(orchestrator, store, project, repo, analysis_engine)
    first, second = [a.id for a in job.proposed_remediations]

    with pytest.raises(ValidationError):
        await remediation.decide(job.id, ApprovalDecision.PARTIAL)
    with pytest.raises(ValidationError):
        await remediation.decide(job.id, ApprovalDecision.PARTIAL, selected_action_ids=["fix_unknown"])

    approved = await remediation.decide(job.id, ApprovalDecision.PARTIAL, selected_action_ids=[second])

    assert approved == [second]
    stored = await store.get_job(job.id)
    assert stored.human_approval.status == ApprovalStatus.PARTIAL
    assert stored.human_approval.rejected_actions == [first]


@pytest.mark.asyncio
async def test_decision_requires_awaiting_job(remediation, store, project):
    job = await store.create_job(project.id, "user-1", TriggerSource.MANUAL)

    with pytest.raises(NotFoundError):
        await remediation.decide("missing", ApprovalDecision.APPROVE_ALL)
    with pytest.raises(StateConflictError):
        await remediation.decide(job.id, ApprovalDecision.APPROVE_ALL)


@pytest.mark.asyncio
async def test_execute_opens_merge_request_per_file(orchestrator, remediation, store, project, repo, analysis_engine):
    job = await _awaiting_job(orchestrator, store, project, repo, analysis_engine)
    approved = await remediation.decide(job.id, ApprovalDecision.APPROVE_ALL)

    results = await remediation.execute(job.id, approved)

    assert [r.success for r in results] == [True, True]
    assert len(repo.branches) == 2
    assert all(name.startswith(f"fix/security-remediation-{job.id[:8]}-") for name, _ in repo.branches)
    assert all(from_ref == "main" for _, from_ref in repo.branches)
    assert len({name for name, _ in repo.branches}) == 2
    db_commit = next(c for c in repo.commits if c["path"] == "app/db.py")
    assert "    safe_sql_injection()" in db_commit["content"]
    assert "Fix sql_injection in app/db.py" in db_commit["message"]
    assert all(mr["target"] == "main" for mr in repo.merge_requests)
    assert "Severity: HIGH" in repo.merge_requests[0]["description"] or "Severity: HIGH" in repo.merge_requests[1]["description"]

    stored = await store.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.completed_at is not None
    assert len(stored.remediation_results) == 2
    assert all(r.merge_request_ref for r in stored.remediation_results)


@pytest.mark.asyncio
async def test_execute_isolates_failing_batch(orchestrator, remediation, store, project, repo, analysis_engine):
    job = await _awaiting_job(orchestrator, store, project, repo, analysis_engine)
    approved = await remediation.decide(job.id, ApprovalDecision.APPROVE_ALL)
    repo.commit_failing = {"app/views.py"}

    results = await remediation.execute(job.id, approved)

    by_file = {a.file: a.id for a in job.proposed_remediations}
    outcome = {r.action_id: r for r in results}
    assert outcome[by_file["app/db.py"]].success is True
    assert outcome[by_file["app/views.py"]].success is False
    assert "commit rejected" in outcome[by_file["app/views.py"]].error
    assert (await store.get_job(job.id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_execute_applies_edits_bottom_up(remediation, store, project, repo):
    repo.files = {"a.py": "line1\nline2\nline3\nline4"}
    job = await store.create_job(project.id, "user-1", TriggerSource.MANUAL)
    vulns = [
        Vulnerability(id="v1", fingerprint="f1", file="a.py", line=2, type="xss", severity="LOW", code="line2"),
        Vulnerability(id="v2", fingerprint="f2", file="a.py", line=4, type="csrf", severity="LOW", code="line4"),
    ]
    actions = await remediation.propose_actions(vulns)
    await store.update_job(
        job.id,
        {"status": JobStatus.AWAITING_APPROVAL, "proposed_remediations": actions},
    )

    results = await remediation.execute(job.id, [a.id for a in actions])

    assert all(r.success for r in results)
    assert repo.commits[0]["content"] == "line1\nsafe_xss()\nline3\nsafe_csrf()"
    assert len(repo.merge_requests) == 1


@pytest.mark.asyncio
async def test_propose_actions_skips_any_engine_error(remediation, analysis_engine):
    analysis_engine.fix_errors = {"xss": ConnectionError("engine socket reset")}
    vulns = [
        Vulnerability(id="v1", fingerprint="f1", file="a.py", line=1, type="xss", severity="LOW", code="x"),
        Vulnerability(id="v2", fingerprint="f2", file="a.py", line=2, type="csrf", severity="LOW", code="y"),
    ]

    actions = await remediation.propose_actions(vulns)

    assert [a.vulnerability_id for a in actions] == ["v2"]


@pytest.mark.asyncio
async def test_concurrent_decisions_record_one(orchestrator, remediation, store, project, repo, analysis_engine):
    job = await _awaiting_job(orchestrator, store, project, repo, analysis_engine)

    outcomes = await asyncio.gather(
        remediation.decide(job.id, ApprovalDecision.APPROVE_ALL, actor="alice"),
        remediation.decide(job.id, ApprovalDecision.REJECT_ALL, actor="bob"),
        return_exceptions=True,
    )

    conflicts = [o for o in outcomes if isinstance(o, StateConflictError)]
    decided = [o for o in outcomes if isinstance(o, list)]
    assert len(conflicts) == 1
    assert len(decided) == 1
    stored = await store.get_job(job.id)
    assert stored.human_approval.actor in ("alice", "bob")
    assert stored.human_approval.status in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED)


@pytest.mark.asyncio
async def test_execute_fails_second_edit_of_same_line(remediation, store, project, repo):
    repo.files = {"a.py": "line1\nline2\nline3"}
    job = await store.create_job(project.id, "user-1", TriggerSource.MANUAL)
    vulns = [
        Vulnerability(id="v1", fingerprint="f1", file="a.py", line=2, type="xss", severity="LOW", code="line2"),
        Vulnerability(id="v2", fingerprint="f2", file="a.py", line=2, type="csrf", severity="LOW", code="line2"),
    ]
    actions = await remediation.propose_actions(vulns)
    await store.update_job(
        job.id,
        {"status": JobStatus.AWAITING_APPROVAL, "proposed_remediations": actions},
    )

    results = await remediation.execute(job.id, [a.id for a in actions])

    assert [r.success for r in results] == [True, False]
    assert "line 2" in results[1].error
    assert repo.commits[0]["content"] == "line1\nsafe_xss()\nline3"
    assert "Fix csrf" not in repo.commits[0]["message"]
