"""Notification SQLAlchemy model"""
from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String, Text

from secureflow.core.clock import utcnow
from secureflow.core.database import Base


class Notification(Base):
    """
    In-app notification for one user about a project or job event.
    Attributes:
        id: Primary key (UUID string)
        user_id: Recipient
        project_id: Related project, if any
        job_id: Related analysis job, if any
        type: ANALYSIS_STARTED, ANALYSIS_COMPLETED, ANALYSIS_FAILED, PROJECT_CREATED or WEBHOOK_RECEIVED
        title / message: Display text
        data: Structured extras (score, threat level, counts)
        priority: LOW, MEDIUM, HIGH or URGENT
        read / read_at: Read state
        created_at: Timestamp
    """
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, nullable=False)
    user_id = Column(String(255), nullable=False)
    project_id = Column(String(36), nullable=True)
    job_id = Column(String(36), nullable=True)
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    priority = Column(String(16), nullable=False, default="MEDIUM")
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
    )
