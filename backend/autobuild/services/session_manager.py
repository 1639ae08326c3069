from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from uuid import uuid4

from autobuild.errors import BuildValidationError, InvalidStateError, SessionNotFoundError
from autobuild.models.session import InteractiveSession, SessionStatus
from autobuild.services.clarification import extract_options

logger = logging.getLogger(__name__)


class InteractiveSessionManager:
    """Registry of agent runs paused on a question for a human.

    At most one open (waiting or answered) session exists per project; the
    orchestrator decides when sessions are created and closed.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, InteractiveSession] = {}
        self._lock = threading.Lock()

    def create_session(
        self,
        project_id: str,
        question: str,
        options: list[str] | None = None,
        *,
        confidence: int | None = None,
    ) -> InteractiveSession:
        if not options:
            options = extract_options(question) or None

        session = InteractiveSession(
            id=f"session_{uuid4().hex[:12]}",
            project_id=project_id,
            status=SessionStatus.WAITING_FOR_INPUT,
            pending_question=question,
            pending_options=options,
            confidence=confidence,
        )
        with self._lock:
            for existing in self._sessions.values():
                if existing.project_id == project_id and existing.status != SessionStatus.CLOSED:
                    self._close(existing)
            self._sessions[session.id] = session

        logger.info("Project %s waiting for input (session %s)", project_id, session.id)
        return session.model_copy()

    def get_session(self, session_id: str) -> InteractiveSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def get_session_by_project_id(self, project_id: str) -> InteractiveSession | None:
        with self._lock:
            for session in self._sessions.values():
                if session.project_id == project_id and session.status != SessionStatus.CLOSED:
                    return session.model_copy()
        return None

    def has_active_question(self, project_id: str) -> bool:
        session = self.get_session_by_project_id(project_id)
        return session is not None and session.status == SessionStatus.WAITING_FOR_INPUT

    def add_user_response(self, session_id: str, response: str) -> InteractiveSession:
        answer = response.strip()
        if not answer:
            raise BuildValidationError("Response cannot be empty")

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if session.status != SessionStatus.WAITING_FOR_INPUT:
                raise InvalidStateError(
                    f"Session '{session_id}' is {session.status.value}, not waiting for input"
                )
            session.status = SessionStatus.ANSWERED
            session.response = answer
            session.answered_at = datetime.now(UTC)
            return session.model_copy()

    def get_continuation_prompt(self, session_id: str, response: str) -> str:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        question = (session.pending_question or "").strip()
        answer = response.strip()
        return (
            "While building this project you paused to ask the user a question.\n\n"
            f'Your question was:\n"{question}"\n\n'
            f'The user answered:\n"{answer}"\n\n'
            "Continue the build in the current working directory using this answer. "
            "Keep the work already done and do not start over."
        )

    def close_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._close(session)

    def close_for_project(self, project_id: str) -> None:
        with self._lock:
            for session in self._sessions.values():
                if session.project_id == project_id and session.status != SessionStatus.CLOSED:
                    self._close(session)

    def list_sessions(self, project_id: str | None = None) -> list[InteractiveSession]:
        with self._lock:
            return [
                session.model_copy()
                for session in self._sessions.values()
                if project_id is None or session.project_id == project_id
            ]

    def discard_project(self, project_id: str) -> None:
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.project_id == project_id]
            for session_id in stale:
                del self._sessions[session_id]

    @staticmethod
    def _close(session: InteractiveSession) -> None:
        session.status = SessionStatus.CLOSED
        session.closed_at = datetime.now(UTC)
