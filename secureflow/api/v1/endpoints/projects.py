"""Project registration endpoints"""
from typing import List

from fastapi import APIRouter, Depends, Response, status

from secureflow.dependencies.auth import get_commands, get_current_user
from secureflow.schemas.project import ProjectCreate, ProjectResponse, ProjectUpdate
from secureflow.services.commands import AnalysisCommands

router = APIRouter(prefix="/projects", tags=["projects"])


class ProjectCreatedResponse(ProjectResponse):
    """Returned once at registration; the only response that carries the webhook secret."""

    webhook_secret: str


@router.post("", response_model=ProjectCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreate,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """
    Register a repository for scanning.
    Raises 409 if the repository is already registered.
    """
    return await commands.create_project(data, owner_id=user_id)


@router.get("", response_model=List[ProjectResponse])
async def list_projects(
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    return await commands.list_projects(owner_id=user_id)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    return await commands.get_project(project_id)


@router.put("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """
    Change the project's name, tracked branch or scan cadence.
    Setting cadence to ON_EVENT stops scheduled scans for the project.
    """
    return await commands.update_project(project_id, data, owner_id=user_id)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """Raises 409 while an analysis for the project is pending or running."""
    await commands.delete_project(project_id, owner_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{project_id}/webhook/regenerate", response_model=ProjectCreatedResponse)
async def regenerate_webhook_secret(
    project_id: str,
    user_id: str = Depends(get_current_user),
    commands: AnalysisCommands = Depends(get_commands),
):
    """Issue a new webhook secret. The old one stops verifying immediately."""
    return await commands.regenerate_webhook_secret(project_id, owner_id=user_id)
