"""Repository webhook endpoints"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from secureflow.dependencies.auth import get_commands, get_current_user
from secureflow.services.commands import AnalysisCommands

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/gitlab")
async def gitlab_push(
    request: Request,
    gitlab_token: Optional[str] = Header(None, alias="X-Gitlab-Token"),
    signature: Optional[str] = Header(None, alias="X-Signature"),
    commands: AnalysisCommands = Depends(get_commands),
):
    """
    Receive a push event.
    The signature is the hex HMAC-SHA256 of the raw body under the project's webhook secret.
    """
    raw = await request.body()
    result = await commands.receive_push_webhook(signature or gitlab_token, raw)
    content = {"message": result.message}
    if result.job_id:
        content.update(job_id=result.job_id, changed_files=result.changed_files)
    return JSONResponse(status_code=result.status_code, content=content)


@router.post("/regenerate-secret/{repository_project_id}")
async def regenerate_secret(
    repository_project_id: str,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """Regenerate the webhook secret of the project tracking a repository."""
    project = await commands.regenerate_webhook_secret_for_repository(repository_project_id, owner_id=user_id)
    return {
        "message": "Webhook secret regenerated successfully",
        "project_id": project.id,
        "webhook_secret": project.webhook_secret,
    }
