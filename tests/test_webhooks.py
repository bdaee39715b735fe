"""Tests for push webhook ingestion"""
import json

import pytest

from conftest import WEBHOOK_SECRET
from secureflow.core.exceptions import AuthenticationError
from secureflow.core.security import compute_signature
from secureflow.schemas.analysis import JobFilter, TriggerSource
from secureflow.schemas.notification import NotificationType
from secureflow.schemas.project import ProjectCreate, ScanCadence
from secureflow.services.webhook_service import WebhookIngestor


@pytest.fixture
def ingestor(store, projects, repo, dispatcher, test_settings) -> WebhookIngestor:
    return WebhookIngestor(store, projects, lambda project: repo, dispatcher, settings=test_settings)


def _push(project_id: str = "4242", ref: str = "refs/heads/main", kind: str = "push") -> dict:
    return {
        "object_kind": kind,
        "ref": ref,
        "checkout_sha": "c0ffee",
        "project": {"id": int(project_id)},
        "commits": [{"id": "beef01", "message": "first"}, {"id": "c0ffee", "message": "second"}],
    }


def _signed(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    raw = json.dumps(payload).encode()
    return raw, compute_signature(secret, raw)


@pytest.mark.asyncio
async def test_push_creates_webhook_job(ingestor, store, project, repo, dispatcher):
    repo.changed = ["app/db.py", "app/views.py"]
    raw, signature = _signed(_push())

    result = await ingestor.handle_push_event(signature, raw, json.loads(raw))

    assert result.status_code == 202
    assert result.job_id is not None
    assert result.changed_files == 2
    assert dispatcher.submitted == [result.job_id]
    job = await store.get_job(result.job_id)
    assert job.triggered_by == TriggerSource.WEBHOOK
    assert job.commit_ref == "c0ffee"
    assert job.changed_files == ["app/db.py", "app/views.py"]
    assert job.user_id == project.owner_id


@pytest.mark.asyncio
async def test_last_commit_used_without_checkout_sha(ingestor, store, project, repo):
    repo.changed = ["a.py"]
    payload = _push()
    del payload["checkout_sha"]
    raw, signature = _signed(payload)

    result = await ingestor.handle_push_event(signature, raw, payload)

    assert (await store.get_job(result.job_id)).commit_ref == "c0ffee"


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_before_any_job(ingestor, store, project, repo, dispatcher):
    repo.changed = ["a.py"]
    raw, _ = _signed(_push())

    with pytest.raises(AuthenticationError):
        await ingestor.handle_push_event(compute_signature("wrong-secret", raw), raw, json.loads(raw))
    with pytest.raises(AuthenticationError):
        await ingestor.handle_push_event(None, raw, json.loads(raw))

    assert await store.list_jobs(JobFilter(project_id=project.id)) == []
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_signature_covers_raw_body(ingestor, project, repo):
    repo.changed = ["a.py"]
    raw, signature = _signed(_push())
    tampered = raw.replace(b"c0ffee", b"deadbe")

    with pytest.raises(AuthenticationError):
        await ingestor.handle_push_event(signature, tampered, json.loads(tampered))


@pytest.mark.asyncio
async def test_unknown_project_is_ignored(ingestor, project, dispatcher):
    raw, signature = _signed(_push(project_id="999"))

    result = await ingestor.handle_push_event(signature, raw, json.loads(raw))

    assert result.status_code == 200
    assert result.job_id is None
    assert dispatcher.submitted == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        _push(kind="tag_push"),
        _push(ref="refs/heads/feature/login"),
    ],
)
async def test_non_matching_events_are_ignored(ingestor, project, repo, dispatcher, payload):
    repo.changed = ["a.py"]
    raw, signature = _signed(payload)

    result = await ingestor.handle_push_event(signature, raw, payload)

    assert result.status_code == 200
    assert result.job_id is None
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_scheduled_projects_ignore_pushes(ingestor, projects, repo, dispatcher):
    await projects.create_project(
        ProjectCreate(name="nightly", repository_project_id="777", cadence=ScanCadence.DAILY, webhook_secret="nightly"),
        owner_id="owner-1",
    )
    repo.changed = ["a.py"]
    raw, signature = _signed(_push(project_id="777"), secret="nightly")

    result = await ingestor.handle_push_event(signature, raw, json.loads(raw))

    assert result.status_code == 200
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_push_without_code_changes_is_ignored(ingestor, store, project, repo, dispatcher):
    repo.changed = []
    raw, signature = _signed(_push())

    result = await ingestor.handle_push_event(signature, raw, json.loads(raw))

    assert result.status_code == 200
    assert await store.list_jobs(JobFilter(project_id=project.id)) == []
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_malformed_project_field_is_ignored(ingestor, project, dispatcher):
    payload = {**_push(), "project": "4242"}
    raw, signature = _signed(payload)

    result = await ingestor.handle_push_event(signature, raw, payload)

    assert result.status_code == 200
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_malformed_commit_entry_is_ignored(ingestor, project, repo, dispatcher):
    repo.changed = ["a.py"]
    payload = _push()
    del payload["checkout_sha"]
    payload["commits"] = ["c0ffee"]
    raw, signature = _signed(payload)

    result = await ingestor.handle_push_event(signature, raw, payload)

    assert result.status_code == 200
    assert result.message == "ignored: no commits in push"
    assert dispatcher.submitted == []


@pytest.mark.asyncio
async def test_accepted_push_notifies_owner(store, projects, project, repo, dispatcher, notifications, test_settings):
    ingestor = WebhookIngestor(
        store, projects, lambda p: repo, dispatcher, settings=test_settings, notifications=notifications
    )
    repo.changed = ["a.py"]
    raw, signature = _signed(_push())

    result = await ingestor.handle_push_event(signature, raw, json.loads(raw))

    page = await notifications.list_for_user(project.owner_id)
    assert [n.type for n in page.notifications] == [NotificationType.WEBHOOK_RECEIVED]
    assert page.notifications[0].job_id == result.job_id
