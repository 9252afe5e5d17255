"""Registry of live quiz sessions and their result consumers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional

from analytics_service import AnalyticsCollaborator
from certificate import generate_certificate
from question_bank import QuestionBank
from quiz_errors import PersistenceFailure, SessionStateError
from quiz_models import QuizResult, QuizStatus, UserProfile
from quiz_session import ANONYMOUS_USER, QuizSession
from result_store import ResultStore, SkillResultRecord
from settings import Settings

LOGGER = logging.getLogger(__name__)

SAVE_FAILED_NOTICE = "Could not save your results. Please try again."


@dataclass(slots=True)
class SaveStatus:
    """Outcome of the one-time save of a session's result."""

    saved: bool = False
    notice: Optional[str] = None


class QuizService:
    """
    Owns sessions by id, wires persistence to completion and serves
    certificates. At most one in-progress session per signed-in user.

    Completed sessions stay readable for ``session_retention_seconds``
    after completion and are evicted when the next session starts.
    """

    def __init__(
        self,
        question_bank: QuestionBank,
        result_store: ResultStore,
        analytics: Optional[AnalyticsCollaborator] = None,
        settings: Optional[Settings] = None,
        tick_seconds: float = 1.0,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.question_bank = question_bank
        self.result_store = result_store
        self.analytics = analytics
        self.settings = settings or Settings()
        self.tick_seconds = tick_seconds
        self._now = now
        self._sessions: Dict[str, QuizSession] = {}
        self._save_status: Dict[str, SaveStatus] = {}

    @property
    def active_sessions(self) -> int:
        return sum(
            1 for s in self._sessions.values() if s.status is QuizStatus.IN_PROGRESS
        )

    @property
    def tracked_sessions(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[QuizSession]:
        return self._sessions.get(session_id)

    def save_status(self, session_id: str) -> SaveStatus:
        return self._save_status.get(session_id, SaveStatus())

    async def start(
        self,
        subject_id: str,
        user_id: Optional[str] = None,
        profile: Optional[UserProfile] = None,
    ) -> QuizSession:
        """Start a new session, abandoning the user's previous unfinished one."""
        self.evict_expired()
        session = QuizSession(
            self.question_bank,
            self.analytics,
            duration_seconds=self.settings.duration_seconds,
            question_limit=self.settings.question_count,
            tick_seconds=self.tick_seconds,
            difficulty_weight=self.settings.difficulty_weight,
            analytics_timeout_seconds=self.settings.analytics_timeout_seconds,
            now=self._now,
        )
        session.add_completion_listener(self._make_saver(session))
        await session.start(subject_id, user_id, profile)

        if session.user_id != ANONYMOUS_USER:
            for other in list(self._sessions.values()):
                if other.user_id == session.user_id and other.status is QuizStatus.IN_PROGRESS:
                    self.discard(other.session_id)

        self._sessions[session.session_id] = session
        return session

    async def restart(self, session_id: str) -> QuizSession:
        """Replace a session with a fresh attempt at the same subject."""
        old = self._sessions[session_id]
        self.discard(session_id)
        return await self.start(old.subject_id, old.user_id, old.profile)

    def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.abandon()
        self._save_status.pop(session_id, None)

    def evict_expired(self) -> int:
        """Drop sessions completed longer ago than the retention window."""
        cutoff = self._now() - timedelta(seconds=self.settings.session_retention_seconds)
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.status is QuizStatus.ABANDONED
            or (session.result is not None and session.result.session.completed_at <= cutoff)
        ]
        for session_id in expired:
            self.discard(session_id)
        if expired:
            LOGGER.info("Evicted %d finished sessions", len(expired))
        return len(expired)

    async def shutdown(self) -> None:
        """Abandon every session and release the analytics client."""
        for session_id in list(self._sessions):
            self.discard(session_id)
        aclose = getattr(self.analytics, "aclose", None)
        if aclose is not None:
            await aclose()

    def certificate(self, session_id: str, issued_on: Optional[date] = None) -> bytes:
        """
        Render the certificate for a completed session.

        Raises:
            KeyError: If the session is unknown
            SessionStateError: If it has no result or no profile
        """
        session = self._sessions[session_id]
        if session.result is None:
            raise SessionStateError("Certificate is available after completion")
        if session.profile is None:
            raise SessionStateError("Sign in to download a certificate")
        return generate_certificate(
            session.profile.name,
            session.subject_id,
            session.result.final_score,
            issued_on or date.today(),
        )

    def _make_saver(self, session: QuizSession):
        async def save(result: QuizResult) -> None:
            status = self._save_status.setdefault(session.session_id, SaveStatus())
            if session.profile is None:
                return
            record = SkillResultRecord.from_result(result, session.profile)
            try:
                await asyncio.to_thread(self.result_store.save, record)
            except PersistenceFailure as exc:
                LOGGER.error("Result for session %s not saved: %s", session.session_id, exc)
                status.notice = SAVE_FAILED_NOTICE
            else:
                status.saved = True

        return save
