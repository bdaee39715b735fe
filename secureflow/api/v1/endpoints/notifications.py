"""In-app notification endpoints"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from secureflow.dependencies.auth import get_commands, get_current_user
from secureflow.schemas.notification import MarkReadRequest, NotificationPage, NotificationStats
from secureflow.services.commands import AnalysisCommands

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPage)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread: bool = Query(False),
    project_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """The caller's notifications, newest first."""
    return await commands.list_notifications(user_id, page, limit, unread_only=unread, project_id=project_id)


@router.patch("/read")
async def mark_read(
    body: MarkReadRequest,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    unread = await commands.mark_notifications_read(user_id, body.notification_ids, body.mark_all)
    return {"message": "Notifications marked as read", "unread_count": unread}


@router.get("/stats", response_model=NotificationStats)
async def notification_stats(
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    return await commands.notification_stats(user_id)
