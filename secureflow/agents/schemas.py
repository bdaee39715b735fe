"""Shared data schemas for the analysis engine"""
from typing import Any, Optional, List

from pydantic import BaseModel, Field, field_validator


class Finding(BaseModel):
    """A raw finding as reported by the engine for one file (no identity yet)."""
    type: str = "UNKNOWN"
    severity: str = "LOW"
    line: Optional[int] = None
    description: str = ""
    suggested_fix: str = Field("", alias="suggestedFix")
    owasp_category: Optional[str] = Field(None, alias="owaspCategory")
    code: Optional[str] = None
    confidence: float = 0.5
    exploitability: float = 0.5
    impact: float = 0.5

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> str:
        text = str(value or "LOW").strip().upper()
        return text if text in {"LOW", "MEDIUM", "HIGH", "CRITICAL"} else "LOW"

    @field_validator("confidence", "exploitability", "impact", mode="before")
    @classmethod
    def _clamp_unit(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.5
        return min(max(number, 0.0), 1.0)


class FileAnalysis(BaseModel):
    """Engine output for one file"""
    vulnerabilities: List[Finding] = Field(default_factory=list)
    security_score: Optional[int] = Field(None, alias="securityScore")
    threat_level: Optional[str] = Field(None, alias="threatLevel")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class FixProposal(BaseModel):
    """Engine output for one vulnerability fix"""
    fixed_code: str = Field(..., alias="fixedCode")
    confidence: int = Field(0, ge=0, le=100)   # percent
    description: str = ""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("confidence", mode="before")
    @classmethod
    def _percent(cls, value: Any) -> int:
        number = float(value or 0)
        # engines sometimes answer on a 0-1 scale; a whole 1 still means 1 percent
        if 0 < number < 1:
            number *= 100
        return int(round(min(max(number, 0), 100)))
