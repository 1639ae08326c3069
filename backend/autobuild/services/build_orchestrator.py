from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from enum import Enum
from typing import Any, TypeVar
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autobuild.errors import (
    AgentFailure,
    BuildError,
    BuildValidationError,
    DeployFailure,
    InvalidStateError,
    ProjectNotFoundError,
)
from autobuild.models.build import (
    ACTIVE_STATUSES,
    BuildProgressEvent,
    BuildProject,
    BuildStatus,
    BuildStatusSnapshot,
    DeployTarget,
    ProgressEventKind,
    ProjectType,
)
from autobuild.models.session import AgentRunState, InteractiveSession, SessionStatus
from autobuild.repositories.build_repository import BuildRepository
from autobuild.services.agent_invoker import AgentInvoker, AgentRunResult, InputRequest
from autobuild.services.clarification import validate_response
from autobuild.services.deploy_adapter import DeployConfig, VercelDeployAdapter
from autobuild.services.dev_server_service import DevServerService
from autobuild.services.event_bus import ProgressEventBus
from autobuild.services.prompts import (
    compose_build_prompt,
    compose_modification_prompt,
    compose_retry_description,
    compose_test_prompt,
)
from autobuild.services.session_manager import InteractiveSessionManager
from autobuild.services.task_service import TaskService
from autobuild.services.workspace_manager import WorkspaceEntry, WorkspaceFile, WorkspaceManager

logger = logging.getLogger(__name__)

PHASE_PROGRESS: dict[BuildStatus, int] = {
    BuildStatus.QUEUED: 0,
    BuildStatus.PLANNING: 10,
    BuildStatus.BUILDING: 20,
    BuildStatus.TESTING: 70,
    BuildStatus.DEPLOYING: 85,
    BuildStatus.COMPLETE: 100,
}
MODIFIABLE_STATUSES = frozenset({BuildStatus.COMPLETE, BuildStatus.BUILDING, BuildStatus.TESTING})
MESSAGE_PROGRESS = 50
LOG_MESSAGE_LIMIT = 200

E = TypeVar("E", bound=Enum)


class BuildOrchestrator:
    """Owns the lifecycle of build projects.

    Each project's pipeline runs as one background task tracked by the task
    service. Status writes go through ``_transition``, which serialises writers
    per project and refuses to leave a terminal status, so a cancellation and a
    naturally finishing pipeline race safely: whichever reaches a terminal
    status first wins and the other stops at its next checkpoint.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: ProgressEventBus,
        workspace_manager: WorkspaceManager,
        agent_invoker: AgentInvoker,
        session_manager: InteractiveSessionManager,
        task_service: TaskService,
        dev_server_service: DevServerService,
        deploy_adapter: VercelDeployAdapter | None = None,
        deploy_production: bool = False,
    ):
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.workspace_manager = workspace_manager
        self.agent_invoker = agent_invoker
        self.session_manager = session_manager
        self.task_service = task_service
        self.dev_server_service = dev_server_service
        self.deploy_adapter = deploy_adapter
        self.deploy_production = deploy_production

        self._locks: dict[str, asyncio.Lock] = {}
        self._cancelled: set[str] = set()
        self._active_runs: dict[str, str] = {}
        self._run_states: dict[str, AgentRunState] = {}

    # Public operations

    async def start_build(
        self,
        description: str,
        project_type: ProjectType | str,
        *,
        preferred_stack: str | None = None,
        deploy_target: DeployTarget | str = DeployTarget.LOCALHOST,
    ) -> str:
        """Create a queued project and schedule its pipeline; returns the project id."""
        text = (description or "").strip()
        if not text:
            raise BuildValidationError("Description is required")
        parsed_type = self._parse_enum(ProjectType, project_type, "project type")
        parsed_target = self._parse_enum(DeployTarget, deploy_target, "deploy target")

        project = await self._create_project(
            text,
            parsed_type,
            preferred_stack=(preferred_stack or "").strip() or None,
            deploy_target=parsed_target,
        )
        await self._launch(project.id, self._run_build(project.id))
        return project.id

    async def modify_existing_project(self, project_id: str, change_description: str) -> None:
        """Re-run the agent on an existing workspace.

        A ``complete`` project is reopened into ``building``; a run parked on a
        question continues in its phase. When the project's session has been
        answered, *change_description* is the continuation prompt and is passed
        to the agent unchanged.
        """
        text = (change_description or "").strip()
        if not text:
            raise BuildValidationError("Change description is required")

        self._reserve(project_id)
        try:
            project = await self._require_project(project_id)
            self._ensure_modifiable(project)

            session = self.session_manager.get_session_by_project_id(project_id)
            resumed = session is not None and session.status == SessionStatus.ANSWERED
            if session is not None and not resumed:
                self.session_manager.close_session(session.id)
            prompt = text if resumed else compose_modification_prompt(text)

            await self._launch_change(project, prompt, resumed=resumed)
        except BaseException:
            self.task_service.release(project_id)
            raise

    async def respond_to_question(self, project_id: str, response: str) -> InteractiveSession:
        """Record an answer to the project's pending question and resume the run."""
        self._reserve(project_id)
        try:
            project = await self._require_project(project_id)
            self._ensure_modifiable(project)

            session = self.session_manager.get_session_by_project_id(project_id)
            if session is None or session.status != SessionStatus.WAITING_FOR_INPUT:
                raise InvalidStateError(f"Project '{project_id}' has no pending question")

            match = validate_response(response, session.pending_options)
            if not match.is_valid:
                raise BuildValidationError(match.message or "Invalid response")
            answer = match.matched_option or response.strip()

            answered = self.session_manager.add_user_response(session.id, answer)
            prompt = self.session_manager.get_continuation_prompt(session.id, answer)
            await self._launch_change(project, prompt, resumed=True)
        except BaseException:
            self.task_service.release(project_id)
            raise
        return answered

    async def cancel_build(self, project_id: str) -> bool:
        """Cancel a non-terminal build; ``False`` if it already reached a terminal status."""
        project = await self._require_project(project_id)
        if project.status.is_terminal:
            return False

        self._cancelled.add(project_id)
        cancelled = await self._transition(
            project_id, BuildStatus.CANCELLED, "Build cancelled by user"
        )
        if cancelled is None:
            self._cancelled.discard(project_id)
            return False

        run_id = self._active_runs.get(project_id)
        if run_id is not None:
            await self.agent_invoker.cancel(run_id)
        await self.dev_server_service.stop(project_id)
        if not self.task_service.is_running(project_id):
            await self._prune(project_id)
        return True

    async def retry_build(self, project_id: str, modifications: str | None = None) -> str:
        """Start a new project from a failed one; the failed project is left untouched."""
        source = await self._require_project(project_id)
        if source.status != BuildStatus.FAILED:
            raise InvalidStateError(
                f"Only failed builds can be retried; project '{project_id}' is "
                f"{source.status.value}"
            )

        notes = (modifications or "").strip() or None
        project = await self._create_project(
            compose_retry_description(source.description, notes),
            source.project_type,
            preferred_stack=source.preferred_stack,
            deploy_target=source.deploy_target,
            retried_from=source.id,
            metadata={"previous_error": source.error, "retry_modifications": notes},
        )
        logger.info("Retrying project %s as %s", source.id, project.id)
        await self._launch(project.id, self._run_build(project.id, previous_error=source.error))
        return project.id

    async def get_project_status(self, project_id: str) -> BuildStatusSnapshot:
        async with self.session_factory() as session:
            repo = BuildRepository(session)
            project = await repo.get_project(project_id)
            if project is None:
                return BuildStatusSnapshot()
            logs = await repo.list_logs(project_id)
        return BuildStatusSnapshot(project=project, logs=logs)

    async def get_project(self, project_id: str) -> BuildProject | None:
        async with self.session_factory() as session:
            return await BuildRepository(session).get_project(project_id)

    async def list_projects(self, limit: int | None = None) -> list[BuildProject]:
        async with self.session_factory() as session:
            return await BuildRepository(session).list_projects(limit)

    async def get_most_recent_project(self) -> BuildProject | None:
        projects = await self.list_projects(limit=1)
        return projects[0] if projects else None

    async def get_most_recent_running_build(self) -> BuildProject | None:
        for project in await self.list_projects():
            if project.status in ACTIVE_STATUSES or project.status == BuildStatus.QUEUED:
                return project
        return None

    async def delete_project(self, project_id: str) -> bool:
        project = await self._require_project(project_id)
        if self.task_service.is_running(project_id):
            raise InvalidStateError(
                f"Project '{project_id}' has a build in progress; cancel it first"
            )

        await self.dev_server_service.stop(project_id)
        self.session_manager.discard_project(project_id)
        async with self.session_factory() as session:
            deleted = await BuildRepository(session).delete_project(project_id)
        await self.workspace_manager.delete_workspace(project.id)

        self._locks.pop(project_id, None)
        self._cancelled.discard(project_id)
        self._run_states.pop(project_id, None)
        logger.info("Deleted project %s", project_id)
        return deleted

    async def list_project_files(
        self, project_id: str, max_depth: int = 10
    ) -> list[WorkspaceEntry]:
        project = await self._require_project(project_id)
        return await self.workspace_manager.list_files(project.workspace_path, max_depth)

    async def read_project_file(self, project_id: str, relative_path: str) -> WorkspaceFile:
        project = await self._require_project(project_id)
        return await self.workspace_manager.read_file(project.workspace_path, relative_path)

    def get_session(self, project_id: str) -> InteractiveSession | None:
        return self.session_manager.get_session_by_project_id(project_id)

    def get_run_state(self, project_id: str) -> AgentRunState | None:
        return self._run_states.get(project_id)

    async def watch(self, project_id: str) -> AsyncIterator[BuildProgressEvent]:
        """Yield a ``connected`` event, then live events until the build ends.

        The stream subscribes before reading the project so no event published
        in between is lost. It ends at once for unknown or finished projects.
        """
        stream = self.event_bus.open_stream(project_id)
        try:
            project = await self.get_project(project_id)
            yield BuildProgressEvent(
                project_id=project_id,
                kind=ProgressEventKind.CONNECTED,
                phase=project.status if project else None,
                message="Connected to build stream",
                progress=PHASE_PROGRESS.get(project.status) if project else None,
            )
            if project is None or project.status.is_terminal:
                return

            while True:
                event = await stream.get()
                yield event
                if (
                    event.kind == ProgressEventKind.PHASE
                    and event.phase is not None
                    and event.phase.is_terminal
                ):
                    return
        finally:
            stream.close()

    # Pipeline

    async def _run_build(self, project_id: str, *, previous_error: str | None = None) -> None:
        project = await self._require_project(project_id)

        if not await self._step(project_id, BuildStatus.PLANNING, "Planning project structure..."):
            return
        prompt = compose_build_prompt(
            project.description,
            project.project_type,
            project.preferred_stack,
            previous_error=previous_error,
        )
        async with self.session_factory() as session:
            await BuildRepository(session).update_project(project_id, build_prompt=prompt)

        if not await self._step(project_id, BuildStatus.BUILDING, "Building project..."):
            return
        await self._continue_from(project_id, BuildStatus.BUILDING, prompt)

    async def _continue_from(
        self,
        project_id: str,
        phase: BuildStatus,
        prompt: str,
        *,
        resumed: bool = False,
    ) -> None:
        """Run the agent for *phase*, then every phase after it."""
        project = await self._require_project(project_id)

        if await self._invoke_agent(project, phase, prompt, resumed=resumed) is None:
            return

        if phase == BuildStatus.BUILDING:
            if not await self._step(project_id, BuildStatus.TESTING, "Testing the project..."):
                return
            if await self._invoke_agent(project, BuildStatus.TESTING, compose_test_prompt()) is None:
                return

        await self._finish(project)

    async def _invoke_agent(
        self,
        project: BuildProject,
        phase: BuildStatus,
        prompt: str,
        *,
        resumed: bool = False,
    ) -> AgentRunResult | None:
        """Run the agent once; ``None`` when the pipeline must stop without failing."""
        project_id = project.id
        if self._is_cancelled(project_id):
            return None

        run_id = f"{project_id}-{uuid4().hex[:8]}"
        self._active_runs[project_id] = run_id
        self._run_states[project_id] = AgentRunState.RESUMED if resumed else AgentRunState.RUNNING

        async def on_output(text: str) -> None:
            await self._record_message(project_id, phase, text)

        try:
            result = await self.agent_invoker.run_agent(
                project.workspace_path,
                prompt,
                run_id=run_id,
                on_output=on_output,
            )
        finally:
            if self._active_runs.get(project_id) == run_id:
                del self._active_runs[project_id]

        if result.cancelled or self._is_cancelled(project_id):
            return None
        if result.input_request is not None:
            await self._park(project_id, phase, result.input_request)
            return None
        if not result.success:
            raise AgentFailure(result.error or f"Agent failed during {phase.value}")
        return result

    async def _park(self, project_id: str, phase: BuildStatus, request: InputRequest) -> None:
        async with self._lock_for(project_id):
            if self._is_cancelled(project_id):
                return
            session = self.session_manager.create_session(
                project_id,
                request.question,
                request.options,
                confidence=request.confidence,
            )
            self._run_states[project_id] = AgentRunState.WAITING_FOR_INPUT
            message = f"Waiting for input: {request.question}"
            async with self.session_factory() as db:
                await BuildRepository(db).append_log(project_id, phase, self._truncate(message))
            self.event_bus.publish(
                project_id,
                BuildProgressEvent(
                    project_id=project_id,
                    phase=phase,
                    kind=ProgressEventKind.INPUT_REQUIRED,
                    message=request.question,
                    payload={
                        "session_id": session.id,
                        "question": session.pending_question,
                        "options": session.pending_options,
                    },
                ),
            )

    async def _finish(self, project: BuildProject) -> None:
        project_id = project.id

        if project.deploy_target == DeployTarget.LOCALHOST:
            async def emit(message: str) -> None:
                await self._record_message(project_id, BuildStatus.TESTING, message)

            port = await self.dev_server_service.start(project_id, project.workspace_path, emit)
            completed = None
            if not self._is_cancelled(project_id):
                completed = await self._transition(
                    project_id,
                    BuildStatus.COMPLETE,
                    f"Build complete! Running at http://localhost:{port}",
                    local_port=port,
                )
            if completed is None:
                await self.dev_server_service.stop(project_id)
            return

        if not await self._step(project_id, BuildStatus.DEPLOYING, "Deploying..."):
            return
        if self.deploy_adapter is None:
            raise DeployFailure(f"No deploy adapter configured for {project.deploy_target.value}")

        result = await self.deploy_adapter.deploy(
            project.workspace_path,
            DeployConfig(
                project_name=f"autobuild-{project_id[:12]}",
                production=self.deploy_production,
            ),
        )
        if self._is_cancelled(project_id):
            return
        if not result.success:
            raise DeployFailure(result.error or "Deployment failed")

        url = result.production_url or result.url
        await self._transition(
            project_id,
            BuildStatus.COMPLETE,
            f"Build complete! Deployed to {url}",
            deploy_url=result.url,
            production_url=result.production_url,
        )

    async def _launch_change(
        self, project: BuildProject, prompt: str, *, resumed: bool
    ) -> None:
        project_id = project.id
        if project.status == BuildStatus.COMPLETE:
            phase = BuildStatus.BUILDING
            reopened = await self._transition(
                project_id, BuildStatus.BUILDING, "Applying changes...", reopen=True
            )
            if reopened is None:
                raise InvalidStateError(f"Project '{project_id}' can no longer be modified")
        else:
            phase = project.status
            await self._record_message(
                project_id,
                phase,
                "Resuming with the user's answer..." if resumed else "Applying changes...",
            )

        await self._launch(
            project_id,
            self._continue_from(project_id, phase, prompt, resumed=resumed),
        )

    async def _launch(self, project_id: str, steps: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(self._guard(project_id, steps), name=f"build-{project_id}")
        await self.task_service.track_task(project_id, task)

    async def _guard(self, project_id: str, steps: Coroutine[Any, Any, None]) -> None:
        try:
            await steps
        except asyncio.CancelledError:
            logger.info("Pipeline task for project %s was cancelled", project_id)
            raise
        except BuildError as exc:
            logger.warning("Build %s failed: %s", project_id, exc.message)
            await self._fail(project_id, exc.message)
        except Exception as exc:
            logger.exception("Pipeline for project %s crashed", project_id)
            await self._fail(project_id, str(exc) or exc.__class__.__name__)
        await self._prune(project_id)

    async def _fail(self, project_id: str, error: str) -> None:
        try:
            await self._transition(
                project_id, BuildStatus.FAILED, f"Build failed: {error}", error=error
            )
        except ProjectNotFoundError:
            logger.warning("Project %s was removed before its failure was recorded", project_id)

    # State writes

    async def _create_project(
        self,
        description: str,
        project_type: ProjectType,
        *,
        preferred_stack: str | None,
        deploy_target: DeployTarget,
        retried_from: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BuildProject:
        project_id = uuid4().hex
        workspace_path = await self.workspace_manager.create_workspace(project_id)
        message = "Build queued"

        async with self._lock_for(project_id):
            async with self.session_factory() as session:
                repo = BuildRepository(session)
                project = await repo.create_project(
                    project_id=project_id,
                    description=description,
                    project_type=project_type,
                    workspace_path=workspace_path,
                    preferred_stack=preferred_stack,
                    deploy_target=deploy_target,
                    retried_from=retried_from,
                    metadata=metadata,
                )
                await repo.append_log(project_id, BuildStatus.QUEUED, message)
            self._publish_phase(project_id, BuildStatus.QUEUED, message)

        logger.info("Queued %s project %s", project_type.value, project_id)
        return project

    async def _step(self, project_id: str, status: BuildStatus, message: str) -> bool:
        if self._is_cancelled(project_id):
            return False
        return await self._transition(project_id, status, message) is not None

    async def _transition(
        self,
        project_id: str,
        status: BuildStatus,
        message: str,
        *,
        reopen: bool = False,
        **patch: Any,
    ) -> BuildProject | None:
        """Persist *status*, log it and publish one phase event.

        Returns ``None`` when the project already reached a terminal status.
        With ``reopen`` the project must be ``complete`` and moves back into a
        phase; any other current status refuses the write.
        """
        async with self._lock_for(project_id):
            async with self.session_factory() as session:
                repo = BuildRepository(session)
                current = await repo.get_project(project_id)
                if current is None:
                    raise ProjectNotFoundError(project_id)
                if reopen:
                    refused = current.status != BuildStatus.COMPLETE
                else:
                    refused = current.status.is_terminal
                if refused:
                    logger.info(
                        "Project %s is %s; ignoring transition to %s",
                        project_id,
                        current.status.value,
                        status.value,
                    )
                    return None
                project = await repo.update_project_status(project_id, status, **patch)
                await repo.append_log(project_id, status, message)
            logger.info("Project %s: %s -> %s", project_id, current.status.value, status.value)
            self._publish_phase(project_id, status, message)

        if status.is_terminal:
            self.session_manager.close_for_project(project_id)
            self._run_states.pop(project_id, None)
        return project

    async def _record_message(self, project_id: str, phase: BuildStatus, text: str) -> None:
        """Log and publish one chunk of agent or tool output."""
        chunk = text.strip()
        if not chunk:
            return
        message = self._truncate(chunk)
        async with self._lock_for(project_id):
            if self._is_cancelled(project_id):
                return
            async with self.session_factory() as session:
                await BuildRepository(session).append_log(project_id, phase, message)
            self.event_bus.publish(
                project_id,
                BuildProgressEvent(
                    project_id=project_id,
                    phase=phase,
                    kind=ProgressEventKind.MESSAGE,
                    message=message,
                    progress=(
                        MESSAGE_PROGRESS
                        if phase == BuildStatus.BUILDING
                        else PHASE_PROGRESS.get(phase)
                    ),
                ),
            )

    def _publish_phase(self, project_id: str, status: BuildStatus, message: str) -> None:
        self.event_bus.publish(
            project_id,
            BuildProgressEvent(
                project_id=project_id,
                phase=status,
                kind=ProgressEventKind.PHASE,
                message=message,
                progress=PHASE_PROGRESS.get(status),
            ),
        )

    # Helpers

    def _lock_for(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = self._locks[project_id] = asyncio.Lock()
        return lock

    def _is_cancelled(self, project_id: str) -> bool:
        return project_id in self._cancelled

    def _reserve(self, project_id: str) -> None:
        if not self.task_service.reserve(project_id):
            raise InvalidStateError(f"Project '{project_id}' already has a build in progress")

    @staticmethod
    def _ensure_modifiable(project: BuildProject) -> None:
        if project.status not in MODIFIABLE_STATUSES:
            raise InvalidStateError(
                f"Project '{project.id}' is {project.status.value} and cannot be modified"
            )

    async def _prune(self, project_id: str) -> None:
        """Forget the cancel flag and lock of a project that reached a terminal status."""
        project = await self.get_project(project_id)
        if project is not None and not project.status.is_terminal:
            return
        self._cancelled.discard(project_id)
        lock = self._locks.get(project_id)
        if lock is not None and not lock.locked():
            del self._locks[project_id]

    async def _require_project(self, project_id: str) -> BuildProject:
        project = await self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    @staticmethod
    def _truncate(message: str) -> str:
        if len(message) <= LOG_MESSAGE_LIMIT:
            return message
        return f"{message[: LOG_MESSAGE_LIMIT - 3]}..."

    @staticmethod
    def _parse_enum(enum_type: type[E], value: E | str, label: str) -> E:
        if isinstance(value, enum_type):
            return value
        try:
            return enum_type(value)
        except ValueError:
            allowed = ", ".join(member.value for member in enum_type)
            raise BuildValidationError(
                f"Invalid {label} '{value}'; expected one of: {allowed}"
            ) from None
