"""Pydantic schemas for analysis jobs, findings and remediation"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.IN_PROGRESS)
TERMINAL_STATUSES = (JobStatus.AWAITING_APPROVAL, JobStatus.COMPLETED, JobStatus.FAILED)


class Stage(str, Enum):
    FETCHING_CODE = "FETCHING_CODE"
    STATIC_ANALYSIS = "STATIC_ANALYSIS"
    AI_ANALYSIS = "AI_ANALYSIS"
    THREAT_MODELING = "THREAT_MODELING"

    @property
    def progress(self) -> int:
        return STAGE_PROGRESS[self]


# Progress is derived from the stage, never set on its own
STAGE_PROGRESS = {
    Stage.FETCHING_CODE: 10,
    Stage.STATIC_ANALYSIS: 30,
    Stage.AI_ANALYSIS: 60,
    Stage.THREAT_MODELING: 80,
}
FINISHED_PROGRESS = 100


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}


class Risk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TriggerSource(str, Enum):
    MANUAL = "manual"
    WEBHOOK = "webhook"
    SCHEDULED = "scheduled"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PARTIAL = "PARTIAL"


class ApprovalDecision(str, Enum):
    APPROVE_ALL = "APPROVE_ALL"
    REJECT_ALL = "REJECT_ALL"
    PARTIAL = "PARTIAL"


class RemediationType(str, Enum):
    CODE_FIX = "CODE_FIX"
    DEPENDENCY_UPDATE = "DEPENDENCY_UPDATE"
    CONFIG_CHANGE = "CONFIG_CHANGE"


class Vulnerability(BaseModel):
    """A single finding. Frozen once created by the owning run."""

    model_config = ConfigDict(frozen=True)

    id: str
    fingerprint: str
    file: str
    line: Optional[int] = None
    severity: Severity = Severity.LOW
    type: str
    description: str = ""
    suggested_fix: str = ""
    owasp_category: Optional[str] = None
    code: Optional[str] = None
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    exploitability: float = Field(0.5, ge=0.0, le=1.0)
    impact: float = Field(0.5, ge=0.0, le=1.0)

    @field_validator("severity", mode="before")
    @classmethod
    def _upper_severity(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class ProposedRemediationAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    vulnerability_id: str
    remediation_type: RemediationType = RemediationType.CODE_FIX
    title: str
    description: str = ""
    file: str
    line: Optional[int] = None
    severity: Severity
    original_code: str = ""
    proposed_code: str
    confidence: int = Field(..., ge=0, le=100)
    automated: bool
    estimated_risk: Risk


class HumanApproval(BaseModel):
    status: ApprovalStatus = ApprovalStatus.PENDING
    approved_actions: list[str] = Field(default_factory=list)
    rejected_actions: list[str] = Field(default_factory=list)
    actor: Optional[str] = None
    decided_at: Optional[datetime] = None
    comments: Optional[str] = None


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    timestamp: datetime
    security_score: int
    threat_level: Severity
    vulnerability_count: int
    new_vulnerabilities: int
    resolved_vulnerabilities: int
    commit_ref: str
    triggered_by: TriggerSource


class RemediationResult(BaseModel):
    action_id: str
    success: bool
    error: Optional[str] = None
    commit_ref: Optional[str] = None
    merge_request_ref: Optional[str] = None


class ThreatModel(BaseModel):
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)
    attack_vectors: list[dict[str, Any]] = Field(default_factory=list, alias="attackVectors")
    attack_surface: dict[str, Any] = Field(default_factory=dict, alias="attackSurface")

    model_config = ConfigDict(populate_by_name=True)


class AnalysisJob(BaseModel):
    """Read model of a persisted job."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    user_id: str
    commit_ref: str
    status: JobStatus
    stage: Optional[Stage] = None
    progress: int = 0
    triggered_by: TriggerSource
    vulnerabilities: list[Vulnerability] = Field(default_factory=list)
    security_score: Optional[int] = None
    threat_level: Optional[Severity] = None
    threat_model: Optional[ThreatModel] = None
    proposed_remediations: list[ProposedRemediationAction] = Field(default_factory=list)
    human_approval: HumanApproval = Field(default_factory=HumanApproval)
    remediation_results: list[RemediationResult] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    previous_job_id: Optional[str] = None
    changed_files: list[str] = Field(default_factory=list)
    files_analyzed: int = 0
    analysis_errors: int = 0
    compliance_score: dict[str, float] = Field(default_factory=dict)
    summary: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JobFilter(BaseModel):
    """Query filter for JobStore.list_jobs"""

    project_id: Optional[str] = None
    statuses: Optional[list[JobStatus]] = None
    triggered_by: Optional[TriggerSource] = None
    completed_after: Optional[datetime] = None
    completed_before: Optional[datetime] = None
    exclude_job_id: Optional[str] = None
    order_by_completed: bool = False
    limit: int = 50


class JobCreate(BaseModel):
    project_id: str = Field(..., min_length=1)
    ref: Optional[str] = Field(None, description="Commit or branch; the project's branch head when omitted")


class ApprovalRequest(BaseModel):
    decision: ApprovalDecision
    selected_action_ids: Optional[list[str]] = None
    comments: Optional[str] = Field(None, max_length=2000)


class ApprovalResponse(BaseModel):
    job_id: str
    status: ApprovalStatus
    approved_actions: list[str]
    remediation_started: bool


class ProjectHistory(BaseModel):
    project_id: str
    entries: list[HistoryEntry]
    average_score: Optional[int] = None
    latest_score: Optional[int] = None
    total_new_vulnerabilities: int = 0
    total_resolved_vulnerabilities: int = 0
