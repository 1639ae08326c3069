from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from autobuild.errors import ProjectNotFoundError
from autobuild.models.build import (
    BuildLogEntry,
    BuildProject,
    BuildStatus,
    DeployTarget,
    ProjectType,
)
from autobuild.models.build_db import BuildLogDB, BuildProjectDB

PATCHABLE_FIELDS = frozenset(
    {
        "local_port",
        "deploy_url",
        "production_url",
        "error",
        "build_prompt",
        "commit_sha",
        "github_url",
    }
)


class BuildRepository:
    """Repository for BuildProject and BuildLogEntry database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _project_db_to_model(self, project_db: BuildProjectDB) -> BuildProject:
        """Convert database model to domain model."""
        return BuildProject(
            id=project_db.id,
            description=project_db.description,
            project_type=ProjectType(project_db.project_type),
            status=BuildStatus(project_db.status),
            workspace_path=Path(project_db.workspace_path),
            preferred_stack=project_db.preferred_stack,
            deploy_target=DeployTarget(project_db.deploy_target),
            local_port=project_db.local_port,
            deploy_url=project_db.deploy_url,
            production_url=project_db.production_url,
            error=project_db.error,
            build_prompt=project_db.build_prompt,
            commit_sha=project_db.commit_sha,
            github_url=project_db.github_url,
            retried_from=project_db.retried_from,
            metadata=project_db.project_metadata or {},
            created_at=project_db.created_at,
            updated_at=project_db.updated_at,
        )

    def _log_db_to_model(self, log_db: BuildLogDB) -> BuildLogEntry:
        return BuildLogEntry(
            id=log_db.id,
            project_id=log_db.project_id,
            phase=BuildStatus(log_db.phase),
            message=log_db.message or "",
            timestamp=log_db.timestamp,
        )

    async def _load(self, project_id: str) -> BuildProjectDB:
        result = await self.session.execute(
            select(BuildProjectDB).where(BuildProjectDB.id == project_id)
        )
        project_db = result.scalar_one_or_none()
        if not project_db:
            raise ProjectNotFoundError(project_id)
        return project_db

    @staticmethod
    def _apply_patch(project_db: BuildProjectDB, patch: dict[str, Any]) -> None:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch project fields: {', '.join(sorted(unknown))}")
        for field, value in patch.items():
            setattr(project_db, field, value)

    async def create_project(
        self,
        *,
        project_id: str,
        description: str,
        project_type: ProjectType,
        workspace_path: Path,
        preferred_stack: str | None = None,
        deploy_target: DeployTarget = DeployTarget.LOCALHOST,
        retried_from: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BuildProject:
        now = datetime.now(UTC)
        project_db = BuildProjectDB(
            id=project_id,
            description=description,
            project_type=project_type.value,
            status=BuildStatus.QUEUED.value,
            workspace_path=str(workspace_path),
            preferred_stack=preferred_stack,
            deploy_target=deploy_target.value,
            retried_from=retried_from,
            project_metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        self.session.add(project_db)
        await self.session.commit()
        await self.session.refresh(project_db)
        return self._project_db_to_model(project_db)

    async def get_project(self, project_id: str) -> BuildProject | None:
        result = await self.session.execute(
            select(BuildProjectDB).where(BuildProjectDB.id == project_id)
        )
        project_db = result.scalar_one_or_none()
        if project_db is None:
            return None
        return self._project_db_to_model(project_db)

    async def list_projects(self, limit: int | None = None) -> list[BuildProject]:
        query = select(BuildProjectDB).order_by(
            BuildProjectDB.created_at.desc(),
            BuildProjectDB.id.desc(),
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [self._project_db_to_model(p) for p in result.scalars().all()]

    async def update_project_status(
        self,
        project_id: str,
        status: BuildStatus,
        **patch: Any,
    ) -> BuildProject:
        project_db = await self._load(project_id)
        self._apply_patch(project_db, patch)
        project_db.status = status.value
        project_db.updated_at = datetime.now(UTC)
        await self.session.commit()
        await self.session.refresh(project_db)
        return self._project_db_to_model(project_db)

    async def update_project(self, project_id: str, **patch: Any) -> BuildProject:
        """Write non-status fields without touching the lifecycle."""
        project_db = await self._load(project_id)
        self._apply_patch(project_db, patch)
        project_db.updated_at = datetime.now(UTC)
        await self.session.commit()
        await self.session.refresh(project_db)
        return self._project_db_to_model(project_db)

    async def append_log(
        self,
        project_id: str,
        phase: BuildStatus,
        message: str,
    ) -> BuildLogEntry:
        log_db = BuildLogDB(
            project_id=project_id,
            phase=phase.value,
            message=message,
            timestamp=datetime.now(UTC),
        )
        self.session.add(log_db)
        await self.session.commit()
        await self.session.refresh(log_db)
        return self._log_db_to_model(log_db)

    async def list_logs(self, project_id: str) -> list[BuildLogEntry]:
        result = await self.session.execute(
            select(BuildLogDB).where(BuildLogDB.project_id == project_id).order_by(BuildLogDB.id)
        )
        return [self._log_db_to_model(log) for log in result.scalars().all()]

    async def delete_project(self, project_id: str) -> bool:
        await self.session.execute(delete(BuildLogDB).where(BuildLogDB.project_id == project_id))
        result = await self.session.execute(
            delete(BuildProjectDB).where(BuildProjectDB.id == project_id)
        )
        await self.session.commit()
        return bool(result.rowcount)
