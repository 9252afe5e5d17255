"""
Quiz session state machine.

NOT_STARTED -> IN_PROGRESS -> COMPLETED, with ABANDONED as the exit for
sessions that are reset before completion. Answers are written locally
and synchronously; the optional analytics channel is fed in the
background and only consulted again when the session completes. The
deadline timer is the only thing besides the user that can complete a
session, and score resolution runs exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

from analytics_service import (
    DEFAULT_DIFFICULTY_WEIGHT,
    DEFAULT_TIMEOUT_SECONDS,
    AnalyticsChannel,
    AnalyticsCollaborator,
    ResponseEvent,
)
from deadline_timer import DEFAULT_DURATION_SECONDS, DeadlineTimer
from question_bank import QuestionSource
from quiz_errors import AnalyticsUnavailable, InvalidSubject, SessionStateError
from quiz_models import (
    AnalyticsSnapshot,
    AnswerSlot,
    CompletionReason,
    Question,
    QuizResult,
    QuizStatus,
    Response,
    SessionSnapshot,
    SourceOfTruth,
    UserProfile,
)
from response_recorder import ResponseRecorder
from scoring import adopt_analytics, score_locally

LOGGER = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"
DEFAULT_QUESTION_COUNT = 35

CompletionListener = Callable[[QuizResult], Awaitable[None]]


class QuizSession:
    """One timed attempt at a subject's question battery."""

    def __init__(
        self,
        question_bank: QuestionSource,
        analytics: Optional[AnalyticsCollaborator] = None,
        *,
        session_id: Optional[str] = None,
        duration_seconds: int = DEFAULT_DURATION_SECONDS,
        question_limit: int = DEFAULT_QUESTION_COUNT,
        tick_seconds: float = 1.0,
        difficulty_weight: float = DEFAULT_DIFFICULTY_WEIGHT,
        analytics_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self._bank = question_bank
        self._collaborator = analytics
        self._question_limit = question_limit
        self._difficulty_weight = difficulty_weight
        self._analytics_timeout = analytics_timeout_seconds
        self._clock = clock
        self._now = now
        self._timer = DeadlineTimer(self._on_deadline, duration_seconds, tick_seconds)

        self._status = QuizStatus.NOT_STARTED
        self._starting = False
        self._user_id = ANONYMOUS_USER
        self._subject_id = ""
        self._profile: Optional[UserProfile] = None
        self._questions: Tuple[Question, ...] = ()
        self._recorder: Optional[ResponseRecorder] = None
        self._position = 0
        self._started_at: Optional[datetime] = None
        self._deadline: Optional[datetime] = None
        self._analytics: Optional[AnalyticsChannel] = None
        self._latest_snapshot: Optional[AnalyticsSnapshot] = None
        self._resolution: Optional[asyncio.Task] = None
        self._result: Optional[QuizResult] = None
        self._listeners: List[CompletionListener] = []

    # READ-ONLY VIEW

    @property
    def status(self) -> QuizStatus:
        return self._status

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def subject_id(self) -> str:
        return self._subject_id

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._profile

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    @property
    def responses(self) -> Tuple[AnswerSlot, ...]:
        if self._recorder is None:
            return ()
        return self._recorder.slots

    @property
    def current_position(self) -> int:
        return self._position

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self._position < len(self._questions):
            return self._questions[self._position]
        return None

    @property
    def answered_count(self) -> int:
        return self._recorder.answered_count() if self._recorder else 0

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    @property
    def deadline(self) -> Optional[datetime]:
        return self._deadline

    @property
    def remaining_seconds(self) -> int:
        if self._status is QuizStatus.NOT_STARTED:
            return self._timer.duration_seconds
        return self._timer.remaining_seconds

    @property
    def analytics_session_id(self) -> Optional[str]:
        return self._analytics.token if self._analytics else None

    @property
    def analytics_snapshot(self) -> Optional[AnalyticsSnapshot]:
        return self._latest_snapshot

    @property
    def result(self) -> Optional[QuizResult]:
        return self._result

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Register a coroutine called once with the result."""
        self._listeners.append(listener)

    # LIFECYCLE

    async def start(
        self,
        subject_id: str,
        user_id: Optional[str] = None,
        profile: Optional[UserProfile] = None,
    ) -> None:
        """
        Snapshot the subject's questions and begin the countdown.

        Opening the analytics session is best-effort; without it the
        session runs in local scoring mode.

        Raises:
            InvalidSubject: If the bank has no questions for the subject
            SessionStateError: If the session was already started
        """
        if self._status is not QuizStatus.NOT_STARTED or self._starting:
            raise SessionStateError(f"Session {self.session_id} already started")

        questions = tuple(self._bank.get_questions(subject_id))[: self._question_limit]
        if not questions:
            raise InvalidSubject(subject_id)

        self._starting = True
        try:
            self._subject_id = subject_id
            self._profile = profile
            self._user_id = user_id or (profile.id if profile else ANONYMOUS_USER)

            if self._collaborator is not None:
                self._analytics = await AnalyticsChannel.open(
                    self._collaborator,
                    self._user_id,
                    subject_id,
                    self._apply_snapshot,
                    self._analytics_timeout,
                )
        finally:
            self._starting = False

        if self._status is QuizStatus.ABANDONED:
            if self._analytics is not None:
                self._analytics.close()
            raise SessionStateError(f"Session {self.session_id} was abandoned while starting")

        self._questions = questions
        self._recorder = ResponseRecorder(questions, self._clock)
        self._position = 0
        self._started_at = self._now()
        self._deadline = self._started_at + timedelta(seconds=self._timer.duration_seconds)
        self._status = QuizStatus.IN_PROGRESS
        self._recorder.mark_shown(0)
        self._timer.start()

        LOGGER.info(
            "Session %s started: subject=%s user=%s questions=%d analytics=%s",
            self.session_id,
            subject_id,
            self._user_id,
            len(questions),
            "on" if self._analytics else "off",
        )

    def record_answer(self, position: int, option_index: int) -> Response:
        """
        Record an answer; last write wins.

        The local write happens before returning. When analytics is on,
        the event is queued for ordered delivery and its snapshot is
        applied whenever it arrives.

        Raises:
            SessionStateError: If the session is not in progress
            OutOfRangeAnswer: If position or option index is out of bounds
        """
        self._require_in_progress()
        response = self._recorder.record(position, option_index)

        if self._analytics is not None:
            question = self._questions[position]
            self._analytics.submit(
                ResponseEvent(
                    question_text=question.prompt,
                    chosen_option_text=question.options[option_index],
                    correct_option_text=question.correct_option,
                    category=question.category,
                    elapsed_seconds=response.time_spent_seconds,
                    difficulty_weight=self._difficulty_weight,
                )
            )
        return response

    def answer_current(self, option_index: int) -> Response:
        return self.record_answer(self._position, option_index)

    def go_to(self, position: int) -> Question:
        """Make ``position`` current and restart its visit clock."""
        self._require_in_progress()
        self._recorder.mark_shown(position)
        self._position = position
        return self._questions[position]

    def previous_question(self) -> Question:
        return self.go_to(max(0, self._position - 1))

    async def next_question(self) -> Optional[QuizResult]:
        """Advance, or complete the session when on the last question."""
        self._require_in_progress()
        if self._position < len(self._questions) - 1:
            self.go_to(self._position + 1)
            return None
        return await self.complete(CompletionReason.COMPLETED)

    async def complete(
        self,
        reason: CompletionReason = CompletionReason.MANUAL_SUBMIT,
    ) -> QuizResult:
        """
        Transition to COMPLETED and resolve the score once.

        Further calls return the same result object without contacting
        the analytics collaborator again.

        Raises:
            SessionStateError: If the session never started or was abandoned
        """
        if self._resolution is None:
            if self._status is not QuizStatus.IN_PROGRESS:
                raise SessionStateError(
                    f"Cannot complete session {self.session_id} in state {self._status.value}"
                )
            self._status = QuizStatus.COMPLETED
            self._timer.cancel()
            self._resolution = asyncio.get_running_loop().create_task(
                self._resolve(reason, self._now())
            )
        return await asyncio.shield(self._resolution)

    def abandon(self) -> None:
        """Reset before completion: stop the timer and drop analytics work."""
        if self._status in (QuizStatus.COMPLETED, QuizStatus.ABANDONED):
            return
        self._status = QuizStatus.ABANDONED
        self._timer.cancel()
        if self._analytics is not None:
            self._analytics.close()
        LOGGER.info("Session %s abandoned", self.session_id)

    # INTERNALS

    async def _on_deadline(self) -> None:
        if self._status is not QuizStatus.IN_PROGRESS:
            return
        LOGGER.info("Session %s timed out; completing", self.session_id)
        await self.complete(CompletionReason.TIMEOUT)

    def _apply_snapshot(self, snapshot: AnalyticsSnapshot) -> None:
        if self._status is QuizStatus.ABANDONED:
            return
        self._latest_snapshot = snapshot

    def _require_in_progress(self) -> None:
        if self._status is not QuizStatus.IN_PROGRESS:
            raise SessionStateError(
                f"Session {self.session_id} is {self._status.value}, not in progress"
            )

    async def _resolve(self, reason: CompletionReason, completed_at: datetime) -> QuizResult:
        snapshot = SessionSnapshot(
            session_id=self.session_id,
            user_id=self._user_id,
            subject_id=self._subject_id,
            questions=self._questions,
            responses=self._recorder.slots,
            started_at=self._started_at,
            completed_at=completed_at,
            completion_reason=reason,
        )

        source = SourceOfTruth.LOCAL_FALLBACK
        analytics_view = self._latest_snapshot
        if self._analytics is not None:
            try:
                final = await self._analytics.finalize()
                score, weak_areas = adopt_analytics(final)
            except AnalyticsUnavailable as exc:
                LOGGER.warning(
                    "Session %s: analytics finalize failed, scoring locally: %s",
                    self.session_id,
                    exc,
                )
            else:
                source = SourceOfTruth.ANALYTICS_DERIVED
                analytics_view = final.snapshot or analytics_view

        if source is SourceOfTruth.LOCAL_FALLBACK:
            score, weak_areas = score_locally(snapshot.questions, snapshot.responses)

        self._result = QuizResult(
            final_score=score,
            weak_areas=weak_areas,
            source_of_truth=source,
            session=snapshot,
            analytics=analytics_view,
        )
        LOGGER.info(
            "Session %s completed (%s): score=%d source=%s",
            self.session_id,
            reason.value,
            score,
            source.value,
        )

        for listener in self._listeners:
            try:
                await listener(self._result)
            except Exception:  # noqa: BLE001 (consumers never invalidate the result)
                LOGGER.exception("Completion listener failed for session %s", self.session_id)
        return self._result
