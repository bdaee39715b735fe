"""Project service for managing project scan configurations"""
from datetime import datetime
from typing import Optional
from uuid import uuid4
import logging

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from secureflow.core.exceptions import StateConflictError
from secureflow.core.security import generate_webhook_secret
from secureflow.models.project import Project
from secureflow.schemas.project import ProjectCreate, ProjectScanConfig, ProjectUpdate, ScanCadence

logger = logging.getLogger(__name__)


class ProjectService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_project(self, data: ProjectCreate, owner_id: str) -> ProjectScanConfig:
        # generate a random UUID string for the project id so callers can safely reference it
        new_project = Project(
            id=str(uuid4()),
            name=data.name,
            repository_project_id=data.repository_project_id,
            branch=data.branch,
            cadence=data.cadence.value,
            webhook_secret=data.webhook_secret or generate_webhook_secret(),
            owner_id=owner_id,
        )
        async with self._session_factory() as session:
            session.add(new_project)
            try:
                await session.commit()
                await session.refresh(new_project)
            except IntegrityError as e:
                await session.rollback()
                raise StateConflictError(
                    f"Project for repository {data.repository_project_id} already exists."
                ) from e
        logger.info("Registered project %s (%s) cadence=%s", new_project.id, new_project.name, new_project.cadence)
        return ProjectScanConfig.model_validate(new_project)

    async def get_project(self, project_id: str) -> Optional[ProjectScanConfig]:
        async with self._session_factory() as session:
            result = await session.execute(select(Project).where(Project.id == project_id))
            project = result.scalars().first()
            return ProjectScanConfig.model_validate(project) if project else None

    async def find_by_repository_id(self, repository_project_id: str) -> Optional[ProjectScanConfig]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Project).where(Project.repository_project_id == str(repository_project_id))
            )
            project = result.scalars().first()
            return ProjectScanConfig.model_validate(project) if project else None

    async def list_projects(
        self,
        cadence: Optional[ScanCadence] = None,
        owner_id: Optional[str] = None,
    ) -> list[ProjectScanConfig]:
        stmt = select(Project)
        if cadence is not None:
            stmt = stmt.where(Project.cadence == cadence.value)
        if owner_id is not None:
            stmt = stmt.where(Project.owner_id == owner_id)
        stmt = stmt.order_by(Project.created_at.asc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [ProjectScanConfig.model_validate(p) for p in result.scalars().all()]

    async def update_project(self, project_id: str, data: ProjectUpdate) -> Optional[ProjectScanConfig]:
        """Apply the fields set in `data`. Returns None for an unknown project."""
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        async with self._session_factory() as session:
            result = await session.execute(select(Project).where(Project.id == project_id))
            project = result.scalars().first()
            if project is None:
                return None
            for key, value in changes.items():
                setattr(project, key, value.value if isinstance(value, ScanCadence) else value)
            session.add(project)
            await session.commit()
            await session.refresh(project)
        logger.info("Updated project %s: %s", project_id, sorted(changes))
        return ProjectScanConfig.model_validate(project)

    async def delete_project(self, project_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(Project).where(Project.id == project_id))
            await session.commit()
        if result.rowcount:
            logger.info("Deleted project %s", project_id)
        return bool(result.rowcount)

    async def regenerate_webhook_secret(self, project_id: str) -> Optional[ProjectScanConfig]:
        """Replace the project's webhook secret; signatures made with the old one stop verifying."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(Project).where(Project.id == project_id).values(webhook_secret=generate_webhook_secret())
            )
            await session.commit()
        if not result.rowcount:
            return None
        logger.info("Regenerated webhook secret for project %s", project_id)
        return await self.get_project(project_id)

    async def mark_scanned(self, project_id: str, when: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(update(Project).where(Project.id == project_id).values(last_scan_at=when))
            await session.commit()
