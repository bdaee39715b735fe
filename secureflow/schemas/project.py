"""Pydantic schemas for project scan configuration"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class ScanCadence(str, Enum):
    ON_EVENT = "ON_EVENT"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    repository_project_id: str = Field(..., min_length=1, description="Project id at the source-control provider")
    branch: str = Field("main", min_length=1, description="Tracked branch")
    cadence: ScanCadence = ScanCadence.ON_EVENT
    webhook_secret: Optional[str] = Field(None, description="Generated when omitted")


class ProjectUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    branch: Optional[str] = Field(None, min_length=1)
    cadence: Optional[ScanCadence] = None


class ProjectResponse(BaseModel):
    """
    Schema for project responses.

    Note:
        webhook_secret is NOT included in the response
    """

    id: str
    name: str
    repository_project_id: str
    branch: str
    cadence: ScanCadence
    owner_id: str
    last_scan_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    # Pydantic v2 configuration for ORM conversion from SQLAlchemy objects
    model_config = ConfigDict(from_attributes=True)


class ProjectScanConfig(ProjectResponse):
    """Full configuration, secret included. Internal use only."""

    webhook_secret: str
