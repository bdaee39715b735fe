"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # App Configuration
    APP_NAME: str = "SecureFlow"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database Configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./secureflow.db"

    # Privileged operations (manual scheduled runs)
    ADMIN_TOKEN: str = "change-this-admin-token-in-production"

    # Source repository (GitLab REST API)
    GITLAB_BASE_URL: str = "https://gitlab.com/api/v4"
    GITLAB_API_TOKEN: str = ""
    REPOSITORY_TIMEOUT_SECONDS: float = 30.0

    # Analysis engine (any OpenAI-compatible endpoint)
    LLM_BASE_URL: Optional[str] = None
    LLM_API_KEY: str = "not-needed"
    LLM_MODEL: str = "gpt-4o-mini"
    ENGINE_TIMEOUT_SECONDS: float = 120.0

    # Job orchestration
    MAX_FILES_PER_JOB: int = 10
    ANALYSIS_CONCURRENCY: int = 1
    DEFAULT_FILE_SCORE: int = 50
    VULNERABILITY_DELTA_KEY: Literal["id", "fingerprint"] = "id"

    # Approval gate
    APPROVAL_SEVERITIES: list[str] = ["CRITICAL", "HIGH"]
    APPROVAL_RISKS: list[str] = ["HIGH"]
    APPROVAL_MIN_CONFIDENCE: int = 70

    # Scheduler (UTC)
    SCHEDULER_ENABLED: bool = True
    DAILY_SCAN_HOUR: int = 2
    WEEKLY_SCAN_HOUR: int = 1
    WEEKLY_SCAN_WEEKDAY: int = 6  # Monday == 0
    DAILY_FRESHNESS_HOURS: int = 20
    WEEKLY_FRESHNESS_DAYS: int = 6

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
