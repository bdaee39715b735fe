"""JobHistory SQLAlchemy model (append-only)"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index

from secureflow.core.database import Base


class JobHistory(Base):
    """One trend snapshot per non-failed terminal transition. Rows are never updated."""

    __tablename__ = "job_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("analysis_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(String(36), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    security_score = Column(Integer, nullable=False)
    threat_level = Column(String(16), nullable=False)
    vulnerability_count = Column(Integer, nullable=False, default=0)
    new_vulnerabilities = Column(Integer, nullable=False, default=0)
    resolved_vulnerabilities = Column(Integer, nullable=False, default=0)
    commit_ref = Column(String(255), nullable=False)
    triggered_by = Column(String(16), nullable=False)

    __table_args__ = (
        Index("ix_job_history_project_timestamp", "project_id", "timestamp"),
    )
