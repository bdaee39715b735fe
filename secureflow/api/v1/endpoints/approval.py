"""Remediation approval endpoints"""
from typing import List

from fastapi import APIRouter, Depends

from secureflow.dependencies.auth import get_commands, get_current_user
from secureflow.schemas.analysis import ApprovalRequest, ApprovalResponse, ProposedRemediationAction
from secureflow.services.commands import AnalysisCommands

router = APIRouter(prefix="/approval", tags=["approval"])


@router.post("/{job_id}/approve", response_model=ApprovalResponse)
async def submit_approval(
    job_id: str,
    body: ApprovalRequest,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """
    Record the human decision on a job's proposed fixes.
    Approved fixes are applied in the background. A second decision returns 409.
    """
    return await commands.submit_approval(
        job_id,
        body.decision,
        selected_action_ids=body.selected_action_ids,
        comments=body.comments,
        actor=user_id,
    )


@router.get("/{job_id}/remediation-preview", response_model=List[ProposedRemediationAction])
async def remediation_preview(
    job_id: str,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    job = await commands.get_job(job_id)
    return job.proposed_remediations
