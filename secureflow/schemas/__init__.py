"""Pydantic schemas for request/response"""
from secureflow.schemas.analysis import (
    AnalysisJob,
    ApprovalRequest,
    ApprovalResponse,
    ApprovalDecision,
    ApprovalStatus,
    HistoryEntry,
    HumanApproval,
    JobCreate,
    JobFilter,
    JobStatus,
    ProjectHistory,
    ProposedRemediationAction,
    RemediationResult,
    Risk,
    Severity,
    Stage,
    ThreatModel,
    TriggerSource,
    Vulnerability,
)
from secureflow.schemas.notification import (
    MarkReadRequest,
    NotificationPage,
    NotificationPriority,
    NotificationResponse,
    NotificationStats,
    NotificationType,
)
from secureflow.schemas.project import (
    ProjectCreate,
    ProjectResponse,
    ProjectScanConfig,
    ProjectUpdate,
    ScanCadence,
)

__all__ = [
    "AnalysisJob",
    "ApprovalRequest",
    "ApprovalResponse",
    "ApprovalDecision",
    "ApprovalStatus",
    "HistoryEntry",
    "HumanApproval",
    "JobCreate",
    "JobFilter",
    "JobStatus",
    "MarkReadRequest",
    "NotificationPage",
    "NotificationPriority",
    "NotificationResponse",
    "NotificationStats",
    "NotificationType",
    "ProjectCreate",
    "ProjectHistory",
    "ProjectResponse",
    "ProjectScanConfig",
    "ProjectUpdate",
    "ProposedRemediationAction",
    "RemediationResult",
    "Risk",
    "ScanCadence",
    "Severity",
    "Stage",
    "ThreatModel",
    "TriggerSource",
    "Vulnerability",
]
