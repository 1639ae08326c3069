from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from autobuild.database import get_db
from autobuild.services.build_orchestrator import BuildOrchestrator
from autobuild.services.deploy_adapter import VercelDeployAdapter

AsyncDBSession = Annotated[AsyncSession, Depends(get_db)]


def get_orchestrator(connection: HTTPConnection) -> BuildOrchestrator:
    return connection.app.state.orchestrator


def get_deploy_adapter(connection: HTTPConnection) -> VercelDeployAdapter | None:
    return get_orchestrator(connection).deploy_adapter


OrchestratorDep = Annotated[BuildOrchestrator, Depends(get_orchestrator)]
DeployAdapterDep = Annotated[VercelDeployAdapter | None, Depends(get_deploy_adapter)]
