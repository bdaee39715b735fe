"""In-app notifications for job lifecycle and webhook events."""
from typing import Any, Optional
from uuid import uuid4
import logging
import math

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from secureflow.core.clock import utcnow
from secureflow.core.exceptions import ValidationError
from secureflow.models.notification import Notification
from secureflow.schemas.analysis import Severity
from secureflow.schemas.notification import (
    NotificationPage,
    NotificationPriority,
    NotificationResponse,
    NotificationStats,
    NotificationType,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class NotificationService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        project_id: Optional[str] = None,
        job_id: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> NotificationResponse:
        notification = Notification(
            id=str(uuid4()),
            user_id=user_id,
            project_id=project_id,
            job_id=job_id,
            type=NotificationType(type).value,
            title=title,
            message=message,
            data=data,
            priority=NotificationPriority(priority).value,
            read=False,
        )
        async with self._session_factory() as session:
            session.add(notification)
            await session.commit()
            await session.refresh(notification)
        logger.info("Notification created for user %s: %s", user_id, title)
        return NotificationResponse.model_validate(notification)

    # --- lifecycle events ---
    async def analysis_started(self, user_id: str, project_id: str, job_id: str, project_name: str):
        return await self.create(
            user_id,
            NotificationType.ANALYSIS_STARTED,
            "Security Analysis Started",
            f"Security analysis has started for project {project_name}",
            project_id=project_id,
            job_id=job_id,
        )

    async def analysis_completed(
        self,
        user_id: str,
        project_id: str,
        job_id: str,
        project_name: str,
        security_score: int,
        threat_level: Severity,
        vulnerability_count: int,
        awaiting_approval: bool = False,
    ):
        threat_level = Severity(threat_level)
        message = (
            f"Analysis complete for {project_name}. "
            f"Score: {security_score}/100, {vulnerability_count} issues found"
        )
        if awaiting_approval:
            message += ". Proposed fixes are waiting for approval"
        return await self.create(
            user_id,
            NotificationType.ANALYSIS_COMPLETED,
            "Security Analysis Completed",
            message,
            project_id=project_id,
            job_id=job_id,
            data={
                "security_score": security_score,
                "threat_level": threat_level.value,
                "vulnerability_count": vulnerability_count,
                "awaiting_approval": awaiting_approval,
            },
            priority=(
                NotificationPriority.HIGH
                if threat_level in (Severity.CRITICAL, Severity.HIGH)
                else NotificationPriority.MEDIUM
            ),
        )

    async def analysis_failed(self, user_id: str, project_id: str, job_id: str, project_name: str, error: str):
        return await self.create(
            user_id,
            NotificationType.ANALYSIS_FAILED,
            "Security Analysis Failed",
            f"Analysis failed for project {project_name}: {error}",
            project_id=project_id,
            job_id=job_id,
            priority=NotificationPriority.HIGH,
        )

    async def project_created(self, user_id: str, project_id: str, project_name: str):
        return await self.create(
            user_id,
            NotificationType.PROJECT_CREATED,
            "Project Created",
            f"Project {project_name} is now configured for security analysis",
            project_id=project_id,
            priority=NotificationPriority.LOW,
        )

    async def webhook_received(self, user_id: str, project_id: str, job_id: str, project_name: str, event: str):
        return await self.create(
            user_id,
            NotificationType.WEBHOOK_RECEIVED,
            "Webhook Event Received",
            f"{event} received for project {project_name}. Analysis will begin shortly.",
            project_id=project_id,
            job_id=job_id,
            priority=NotificationPriority.LOW,
        )

    # --- queries ---
    async def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
        project_id: Optional[str] = None,
    ) -> NotificationPage:
        """Newest first, paginated."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        limit = min(limit, MAX_PAGE_SIZE)

        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.read.is_(False))
        if project_id:
            conditions.append(Notification.project_id == project_id)

        async with self._session_factory() as session:
            result = await session.execute(
                select(Notification)
                .where(*conditions)
                .order_by(Notification.created_at.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            rows = result.scalars().all()
            total = await session.scalar(select(func.count()).select_from(Notification).where(*conditions))
            unread = await self._unread_count(session, user_id)

        return NotificationPage(
            notifications=[NotificationResponse.model_validate(n) for n in rows],
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit),
            unread_count=unread,
        )

    async def mark_read(
        self,
        user_id: str,
        notification_ids: Optional[list[str]] = None,
        mark_all: bool = False,
    ) -> int:
        """
        Mark the user's notifications read.

        Returns:
            int: The user's remaining unread count

        Raises:
            ValidationError: neither ids nor mark_all were given
        """
        if not mark_all and notification_ids is None:
            raise ValidationError("Provide notification_ids or mark_all")

        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True, read_at=utcnow())
        )
        if not mark_all:
            stmt = stmt.where(Notification.id.in_(notification_ids))
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
            return await self._unread_count(session, user_id)

    async def stats(self, user_id: str) -> NotificationStats:
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Notification).where(Notification.user_id == user_id)
            )
            unread = await self._unread_count(session, user_id)
        return NotificationStats(unread_count=unread, total_count=total)

    @staticmethod
    async def _unread_count(session: AsyncSession, user_id: str) -> int:
        return await session.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        )
