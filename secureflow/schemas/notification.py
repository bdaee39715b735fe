"""Pydantic schemas for in-app notifications"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    ANALYSIS_STARTED = "ANALYSIS_STARTED"
    ANALYSIS_COMPLETED = "ANALYSIS_COMPLETED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    PROJECT_CREATED = "PROJECT_CREATED"
    WEBHOOK_RECEIVED = "WEBHOOK_RECEIVED"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    project_id: Optional[str] = None
    job_id: Optional[str] = None
    type: NotificationType
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    priority: NotificationPriority
    read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationPage(BaseModel):
    notifications: list[NotificationResponse]
    page: int
    limit: int
    total: int
    pages: int
    unread_count: int


class NotificationStats(BaseModel):
    unread_count: int
    total_count: int


class MarkReadRequest(BaseModel):
    notification_ids: Optional[list[str]] = Field(None, description="Ids to mark read")
    mark_all: bool = False
