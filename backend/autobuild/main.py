from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autobuild.config import Settings, settings
from autobuild.database import AsyncSessionLocal, init_db
from autobuild.routes import api_router, ws_router
from autobuild.services.agent_invoker import AgentInvoker, CommandAgentInvoker
from autobuild.services.build_orchestrator import BuildOrchestrator
from autobuild.services.claude_service import ClaudeAgentInvoker
from autobuild.services.deploy_adapter import VercelDeployAdapter
from autobuild.services.dev_server_service import DevServerService
from autobuild.services.event_bus import ProgressEventBus
from autobuild.services.session_manager import InteractiveSessionManager
from autobuild.services.task_service import TaskService
from autobuild.services.workspace_manager import WorkspaceManager

load_dotenv()

logger = logging.getLogger(__name__)


def create_agent_invoker(config: Settings) -> AgentInvoker:
    if config.agent_backend == "command":
        return CommandAgentInvoker(config.agent_command)
    return ClaudeAgentInvoker(max_turns=config.agent_max_turns)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # Initialize database
    await init_db()

    # Initialize services
    event_bus = ProgressEventBus()
    task_service = TaskService()
    agent_invoker = create_agent_invoker(settings)
    dev_server_service = DevServerService(
        start_port=settings.dev_server_start_port,
        probe_attempts=settings.port_probe_attempts,
        install_timeout=settings.install_timeout,
    )
    orchestrator = BuildOrchestrator(
        session_factory=AsyncSessionLocal,
        event_bus=event_bus,
        workspace_manager=WorkspaceManager(settings.workspace_root),
        agent_invoker=agent_invoker,
        session_manager=InteractiveSessionManager(),
        task_service=task_service,
        dev_server_service=dev_server_service,
        deploy_adapter=VercelDeployAdapter(
            settings.deploy_cli,
            token=settings.deploy_token,
            team_id=settings.deploy_team_id,
            timeout=settings.deploy_timeout,
        ),
        deploy_production=settings.deploy_production,
    )

    app.state.orchestrator = orchestrator
    logger.info(
        "Build orchestrator ready (agent=%s, workspaces=%s)",
        settings.agent_backend,
        settings.workspace_root,
    )

    try:
        yield
    finally:
        await task_service.shutdown()
        await agent_invoker.shutdown()
        await dev_server_service.shutdown()
        event_bus.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Autobuild Backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    app.include_router(ws_router)

    return app


app = create_app()
