"""Analysis job endpoints"""
from typing import List

from fastapi import APIRouter, Depends, Query, status

from secureflow.dependencies.auth import get_commands, get_current_user, require_admin
from secureflow.schemas.analysis import AnalysisJob, JobCreate, ProjectHistory
from secureflow.schemas.project import ScanCadence
from secureflow.services.commands import AnalysisCommands

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post("/start", response_model=AnalysisJob, status_code=status.HTTP_202_ACCEPTED)
async def start_analysis(
    body: JobCreate,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """
    Start a manual analysis job.
    The job runs in the background; poll GET /analysis/{job_id} for progress.
    """
    return await commands.start_job(body.project_id, user_id, body.ref)


@router.get("/project/{project_id}", response_model=List[AnalysisJob])
async def list_project_jobs(
    project_id: str,
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    return await commands.list_jobs(project_id, limit=limit)


@router.get("/project/{project_id}/history", response_model=ProjectHistory)
async def project_history(
    project_id: str,
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """Score and vulnerability trend over the last `days` days, oldest first."""
    return await commands.project_history(project_id, days=days)


@router.post("/trigger-scheduled")
async def trigger_scheduled(
    cadence: ScanCadence = Query(...),
    user_id: str = Depends(require_admin),
    commands: AnalysisCommands = Depends(get_commands),
):
    """Run the due-scan logic for a cadence now (admin only)."""
    report = await commands.trigger_scheduled_run(cadence)
    return {
        "cadence": report.cadence,
        "enqueued": report.enqueued,
        "skipped": report.skipped,
        "failed": report.failed,
    }


@router.get("/{job_id}", response_model=AnalysisJob)
async def get_analysis(
    job_id: str,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    return await commands.get_job(job_id)
