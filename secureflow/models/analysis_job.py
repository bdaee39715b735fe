"""AnalysisJob SQLAlchemy model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index

from secureflow.core.clock import utcnow
from secureflow.core.database import Base


class AnalysisJob(Base):
    """Persistent record for one pipeline run against a project.

    Structured results (vulnerabilities, threat model, proposed actions,
    approval, history) are stored as JSON documents. `approval_status`
    mirrors `human_approval["status"]` so decisions can be written with a
    status-conditioned UPDATE.
    """

    __tablename__ = "analysis_jobs"

    id = Column(String(36), primary_key=True, nullable=False)
    project_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    commit_ref = Column(String(255), nullable=False, default="latest")
    status = Column(String(32), nullable=False, default="PENDING", index=True)
    stage = Column(String(32), nullable=True)
    progress = Column(Integer, nullable=False, default=0)
    triggered_by = Column(String(16), nullable=False, default="manual")

    vulnerabilities = Column(JSON, nullable=False, default=list)
    security_score = Column(Integer, nullable=True)
    threat_level = Column(String(16), nullable=True)
    threat_model = Column(JSON, nullable=True)
    proposed_remediations = Column(JSON, nullable=False, default=list)
    human_approval = Column(JSON, nullable=False, default=dict)
    approval_status = Column(String(16), nullable=False, default="PENDING", index=True)
    remediation_results = Column(JSON, nullable=False, default=list)
    history = Column(JSON, nullable=False, default=list)
    previous_job_id = Column(String(36), nullable=True)
    changed_files = Column(JSON, nullable=False, default=list)
    files_analyzed = Column(Integer, nullable=False, default=0)
    analysis_errors = Column(Integer, nullable=False, default=0)
    compliance_score = Column(JSON, nullable=False, default=dict)
    summary = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_analysis_jobs_project_completed", "project_id", "completed_at"),
    )
