"""SQLAlchemy models"""
from secureflow.models.project import Project
from secureflow.models.analysis_job import AnalysisJob
from secureflow.models.history import JobHistory
from secureflow.models.notification import Notification

__all__ = ["Project", "AnalysisJob", "JobHistory", "Notification"]
