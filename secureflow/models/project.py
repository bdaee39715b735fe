"""Project SQLAlchemy model"""
from sqlalchemy import Column, String, DateTime

from secureflow.core.clock import utcnow
from secureflow.core.database import Base


class Project(Base):
    """
    Project model holding the scan configuration of one repository.
    Attributes:
        id: Primary key (UUID string)
        name: Display name
        repository_project_id: Project id at the source-control provider
        branch: Tracked branch; pushes elsewhere are ignored
        cadence: ON_EVENT, DAILY or WEEKLY
        webhook_secret: Shared secret for push webhook signatures
        owner_id: User that owns scheduled/webhook jobs for this project
        last_scan_at: When the scheduler last enqueued a job
        created_at: Timestamp
    """
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False)
    repository_project_id = Column(String(255), nullable=False, unique=True, index=True)
    branch = Column(String(255), nullable=False, default="main")
    cadence = Column(String(16), nullable=False, default="ON_EVENT", index=True)
    webhook_secret = Column(String(255), nullable=False)
    owner_id = Column(String(255), nullable=False)
    last_scan_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
