"""
Adaptive analytics collaborators.

Provides:
- the contract a quiz session requires from an analytics collaborator
- AnalyticsChannel, the ordered per-session link the session talks to
- MasteryAnalyticsEngine, an in-process per-skill mastery tracker
- RemoteAnalyticsClient, an HTTP client for an external analytics service

Collaborator failures never escape a channel as anything other than
AnalyticsUnavailable; the quiz itself always has local scoring to fall
back on.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

import httpx

from quiz_errors import AnalyticsUnavailable
from quiz_models import AnalyticsSnapshot, FinalAnalytics
from scoring import percent

LOGGER = logging.getLogger(__name__)

DEFAULT_DIFFICULTY_WEIGHT = 0.5
DEFAULT_TIMEOUT_SECONDS = 5.0


# CONTRACT

@dataclass(frozen=True, slots=True)
class ResponseEvent:
    """One answer as reported to the analytics collaborator."""

    question_text: str
    chosen_option_text: str
    correct_option_text: str
    category: str
    elapsed_seconds: float
    difficulty_weight: float = DEFAULT_DIFFICULTY_WEIGHT

    @property
    def is_correct(self) -> bool:
        return self.chosen_option_text == self.correct_option_text

    def to_dict(self) -> Dict:
        return {
            "question_text": self.question_text,
            "chosen_option_text": self.chosen_option_text,
            "correct_option_text": self.correct_option_text,
            "category": self.category,
            "elapsed_seconds": self.elapsed_seconds,
            "difficulty_weight": self.difficulty_weight,
        }


class AnalyticsCollaborator(Protocol):
    """What a quiz session needs from an adaptive analytics backend."""

    async def open_session(self, user_id: str, subject_id: str) -> Optional[str]:
        ...

    async def submit_response(self, token: str, event: ResponseEvent) -> AnalyticsSnapshot:
        ...

    async def finalize_session(self, token: str) -> FinalAnalytics:
        ...

    async def release_session(self, token: str) -> None:
        """Drop a session that will never be finalized."""
        ...


def snapshot_from_dict(data: Dict) -> AnalyticsSnapshot:
    """Parse a snapshot payload; raises AnalyticsUnavailable when malformed."""
    try:
        return AnalyticsSnapshot(
            mastery_score=int(data["mastery_score"]),
            mastery_level=str(data["mastery_level"]),
            learning_velocity=int(data["learning_velocity"]),
            retention_rate=int(data["retention_rate"]),
            weak_areas=tuple(data.get("weak_areas", ())),
            skill_mastery=tuple(
                (str(skill), float(value))
                for skill, value in dict(data.get("skill_mastery", {})).items()
            ),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise AnalyticsUnavailable(f"Malformed analytics snapshot: {exc}") from exc


# CHANNEL

class AnalyticsChannel:
    """
    Exclusive link between one quiz session and one analytics session.

    Events are queued synchronously and delivered one at a time in the
    order they were submitted. Snapshots are handed to ``on_snapshot``
    only while the channel is open; closing the channel cancels any
    in-flight call and discards its result. A channel closed before
    finalize was attempted releases its collaborator session.
    """

    def __init__(
        self,
        collaborator: AnalyticsCollaborator,
        token: str,
        on_snapshot: Callable[[AnalyticsSnapshot], None],
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._collaborator = collaborator
        self._token = token
        self._on_snapshot = on_snapshot
        self._timeout = timeout_seconds
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self._finalizing = False
        self._release: Optional[asyncio.Task] = None

    @classmethod
    async def open(
        cls,
        collaborator: AnalyticsCollaborator,
        user_id: str,
        subject_id: str,
        on_snapshot: Callable[[AnalyticsSnapshot], None],
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> Optional["AnalyticsChannel"]:
        """
        Open an analytics session, best-effort.

        Returns:
            A channel, or None when the collaborator did not hand out a token
        """
        try:
            token = await asyncio.wait_for(
                collaborator.open_session(user_id, subject_id), timeout_seconds
            )
        except Exception as exc:  # noqa: BLE001 (intentional fallback)
            LOGGER.warning("Analytics session could not be opened: %s", exc)
            return None

        if not token:
            LOGGER.info("Analytics collaborator declined session for %s", user_id)
            return None
        return cls(collaborator, token, on_snapshot, timeout_seconds)

    @property
    def token(self) -> str:
        return self._token

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, event: ResponseEvent) -> None:
        """Queue an event for ordered delivery without waiting for it."""
        if self._closed:
            LOGGER.debug("Dropping analytics event on closed channel %s", self._token)
            return
        self._queue.put_nowait(event)
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._deliver())

    async def finalize(self) -> FinalAnalytics:
        """
        Deliver every pending event, then finalize the analytics session.

        Draining the queue and the finalize call are each bounded by the
        channel timeout. The channel is closed afterwards whatever the
        outcome.

        Raises:
            AnalyticsUnavailable: If draining or finalization failed
        """
        if self._closed:
            raise AnalyticsUnavailable("Analytics channel already closed")
        try:
            if self._worker is not None:
                try:
                    await asyncio.wait_for(self._queue.join(), self._timeout)
                except asyncio.TimeoutError as exc:
                    raise AnalyticsUnavailable(
                        f"{self._queue.qsize()} analytics events still pending "
                        f"after {self._timeout}s"
                    ) from exc
            self._finalizing = True
            return await asyncio.wait_for(
                self._collaborator.finalize_session(self._token), self._timeout
            )
        except AnalyticsUnavailable:
            raise
        except Exception as exc:  # noqa: BLE001 (intentional fallback)
            raise AnalyticsUnavailable(f"Analytics finalize failed: {exc}") from exc
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
        if not self._finalizing:
            self._release = asyncio.get_running_loop().create_task(self._release_session())

    async def wait_released(self) -> None:
        """Wait for the collaborator session of a closed channel to be released."""
        if self._release is not None:
            await self._release

    async def _release_session(self) -> None:
        try:
            await asyncio.wait_for(
                self._collaborator.release_session(self._token), self._timeout
            )
        except Exception as exc:  # noqa: BLE001 (intentional fallback)
            LOGGER.warning("Analytics session %s not released: %s", self._token, exc)

    async def _deliver(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                snapshot = await asyncio.wait_for(
                    self._collaborator.submit_response(self._token, event),
                    self._timeout,
                )
            except Exception as exc:  # noqa: BLE001 (intentional fallback)
                LOGGER.warning("Analytics response dropped: %s", exc)
            else:
                if not self._closed:
                    self._on_snapshot(snapshot)
            finally:
                self._queue.task_done()


# IN-PROCESS MASTERY TRACKER

@dataclass(slots=True)
class _TrackedSession:
    user_id: str
    subject_id: str
    mastery: Dict[str, float] = field(default_factory=dict)
    outcomes: List[bool] = field(default_factory=list)
    latest_by_question: Dict[str, bool] = field(default_factory=dict)
    first_outcome_by_question: Dict[str, bool] = field(default_factory=dict)


class MasteryAnalyticsEngine:
    """
    Per-skill mastery tracking with a knowledge-tracing update.

    Mastery estimates persist per (user, skill) across sessions, so a
    returning user starts from what was learned last time.
    """

    P_INIT = 0.3
    P_LEARN = 0.15
    P_SLIP = 0.1
    P_GUESS = 0.25
    WEAK_THRESHOLD = 0.6
    VELOCITY_WINDOW = 5

    _LEVELS = (
        (80, "Expert"),
        (60, "Proficient"),
        (40, "Developing"),
        (0, "Novice"),
    )

    def __init__(self) -> None:
        self._sessions: Dict[str, _TrackedSession] = {}
        self._user_mastery: Dict[str, Dict[str, float]] = {}

    async def open_session(self, user_id: str, subject_id: str) -> Optional[str]:
        token = uuid.uuid4().hex
        self._sessions[token] = _TrackedSession(user_id=user_id, subject_id=subject_id)
        return token

    async def submit_response(self, token: str, event: ResponseEvent) -> AnalyticsSnapshot:
        tracked = self._get(token)
        correct = event.is_correct
        prior = tracked.mastery.get(
            event.category,
            self._user_mastery.get(tracked.user_id, {}).get(event.category, self.P_INIT),
        )
        tracked.mastery[event.category] = self._update(prior, correct, event.difficulty_weight)
        tracked.outcomes.append(correct)
        tracked.first_outcome_by_question.setdefault(event.question_text, correct)
        tracked.latest_by_question[event.question_text] = correct
        return self._snapshot(tracked)

    async def finalize_session(self, token: str) -> FinalAnalytics:
        tracked = self._sessions.pop(token, None)
        if tracked is None:
            raise AnalyticsUnavailable(f"Unknown analytics session {token}")
        self._user_mastery.setdefault(tracked.user_id, {}).update(tracked.mastery)
        snapshot = self._snapshot(tracked)
        return FinalAnalytics(
            final_score=snapshot.mastery_score,
            weak_areas=snapshot.weak_areas,
            snapshot=snapshot,
        )

    async def release_session(self, token: str) -> None:
        self._sessions.pop(token, None)

    def _get(self, token: str) -> _TrackedSession:
        tracked = self._sessions.get(token)
        if tracked is None:
            raise AnalyticsUnavailable(f"Unknown analytics session {token}")
        return tracked

    def _update(self, prior: float, correct: bool, difficulty: float) -> float:
        # Harder questions make guessing less likely and slips more forgivable.
        guess = self.P_GUESS * (1.0 - difficulty / 2)
        slip = self.P_SLIP * (0.5 + difficulty)
        if correct:
            evidence = prior * (1 - slip)
            posterior = evidence / (evidence + (1 - prior) * guess)
        else:
            evidence = prior * slip
            posterior = evidence / (evidence + (1 - prior) * (1 - guess))
        return posterior + (1 - posterior) * self.P_LEARN

    def _snapshot(self, tracked: _TrackedSession) -> AnalyticsSnapshot:
        mastery = tracked.mastery
        if mastery:
            score = round(100 * sum(mastery.values()) / len(mastery))
        else:
            score = 0
        score = max(0, min(100, score))

        recent = tracked.outcomes[-self.VELOCITY_WINDOW:]
        velocity = percent(sum(recent), len(recent))

        retained = sum(
            1
            for question, first in tracked.first_outcome_by_question.items()
            if first and tracked.latest_by_question[question]
        )
        first_correct = sum(tracked.first_outcome_by_question.values())
        retention = percent(retained, first_correct) if first_correct else 0

        weak = sorted(
            (skill for skill, value in mastery.items() if value < self.WEAK_THRESHOLD),
            key=lambda skill: mastery[skill],
        )
        level = next(name for floor, name in self._LEVELS if score >= floor)
        return AnalyticsSnapshot(
            mastery_score=score,
            mastery_level=level,
            learning_velocity=velocity,
            retention_rate=retention,
            weak_areas=tuple(weak),
            skill_mastery=tuple(sorted((k, round(v, 4)) for k, v in mastery.items())),
        )


# REMOTE CLIENT

class RemoteAnalyticsClient:
    """Analytics collaborator backed by an HTTP service."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def open_session(self, user_id: str, subject_id: str) -> Optional[str]:
        data = await self._post("/sessions", {"user_id": user_id, "subject_id": subject_id})
        return data.get("session_id") or None

    async def submit_response(self, token: str, event: ResponseEvent) -> AnalyticsSnapshot:
        data = await self._post(f"/sessions/{token}/responses", event.to_dict())
        return snapshot_from_dict(data)

    async def finalize_session(self, token: str) -> FinalAnalytics:
        data = await self._post(f"/sessions/{token}/finalize", {})
        try:
            snapshot = data.get("snapshot")
            return FinalAnalytics(
                final_score=int(data["final_score"]),
                weak_areas=tuple(data.get("weak_areas", ())),
                snapshot=snapshot_from_dict(snapshot) if snapshot else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AnalyticsUnavailable(f"Malformed finalize payload: {exc}") from exc

    async def release_session(self, token: str) -> None:
        try:
            response = await self._client.delete(f"/sessions/{token}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AnalyticsUnavailable(f"Analytics release of {token} failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: Dict) -> Dict:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AnalyticsUnavailable(f"Analytics request {path} failed: {exc}") from exc
        if not isinstance(data, dict):
            raise AnalyticsUnavailable(f"Analytics request {path} returned {type(data).__name__}")
        return data


def create_analytics_collaborator(
    enabled: bool,
    url: Optional[str] = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> Optional[AnalyticsCollaborator]:
    """
    Factory for the configured analytics capability.

    Returns:
        None when analytics is disabled, a remote client when a URL is
        configured, otherwise the in-process engine
    """
    if not enabled:
        return None
    if url:
        return RemoteAnalyticsClient(url, timeout_seconds)
    return MasteryAnalyticsEngine()
