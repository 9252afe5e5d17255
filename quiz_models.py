"""
Domain models for timed skill assessments.

Questions are immutable and owned by the question bank. Answer slots are
tagged values (Answered / Unanswered) so that option index 0 is never
confused with "no answer". QuizResult is frozen and created exactly once
per session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple, Union


# ENUMS

class QuizStatus(Enum):
    """Lifecycle states of a quiz session."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class SourceOfTruth(Enum):
    """Which scoring path produced a result."""

    ANALYTICS_DERIVED = "analytics_derived"
    LOCAL_FALLBACK = "local_fallback"


class CompletionReason(Enum):
    """Why a session reached the completed state."""

    MANUAL_SUBMIT = "manual_submit"
    COMPLETED = "completed"
    TIMEOUT = "timeout"


# QUESTIONS

@dataclass(frozen=True, slots=True)
class Question:
    """A multiple-choice question with a single correct option."""

    prompt: str
    options: Tuple[str, ...]
    correct_index: int
    category: str

    def __post_init__(self) -> None:
        if len(self.options) < 2:
            raise ValueError("A question needs at least two options")
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correct_index {self.correct_index} out of range for "
                f"{len(self.options)} options"
            )

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]

    @staticmethod
    def from_dict(data: Dict) -> "Question":
        """
        Build a question from its JSON representation.

        Args:
            data: Mapping with question, options, correct and category keys

        Returns:
            Question object

        Raises:
            ValueError: If a required key is missing or out of range
        """
        try:
            return Question(
                prompt=str(data["question"]),
                options=tuple(str(opt) for opt in data["options"]),
                correct_index=int(data["correct"]),
                category=str(data.get("category", "General")),
            )
        except KeyError as exc:
            raise ValueError(f"Question is missing field {exc}") from None


# ANSWER SLOTS

@dataclass(frozen=True, slots=True)
class Answered:
    """A slot holding the selected option index."""

    option_index: int


@dataclass(frozen=True, slots=True)
class Unanswered:
    """A slot with no answer recorded."""


UNANSWERED = Unanswered()

AnswerSlot = Union[Answered, Unanswered]


def slot_value(slot: AnswerSlot) -> Optional[int]:
    """Return the selected index of a slot, or None when unanswered."""
    if isinstance(slot, Answered):
        return slot.option_index
    return None


@dataclass(frozen=True, slots=True)
class Response:
    """A recorded answer with the time spent on the current visit."""

    question_index: int
    selected_option_index: int
    time_spent_seconds: float


# USERS

@dataclass(frozen=True, slots=True)
class UserProfile:
    """Authenticated profile attached to a session."""

    id: str
    name: str


# ANALYTICS VIEWS

@dataclass(frozen=True, slots=True)
class AnalyticsSnapshot:
    """Progress view returned by the analytics collaborator."""

    mastery_score: int
    mastery_level: str
    learning_velocity: int
    retention_rate: int
    weak_areas: Tuple[str, ...] = ()
    skill_mastery: Tuple[Tuple[str, float], ...] = ()

    def to_dict(self) -> Dict:
        return {
            "mastery_score": self.mastery_score,
            "mastery_level": self.mastery_level,
            "learning_velocity": self.learning_velocity,
            "retention_rate": self.retention_rate,
            "weak_areas": list(self.weak_areas),
            "skill_mastery": dict(self.skill_mastery),
        }


@dataclass(frozen=True, slots=True)
class FinalAnalytics:
    """Aggregate outcome of a finalized analytics session."""

    final_score: int
    weak_areas: Tuple[str, ...]
    snapshot: Optional[AnalyticsSnapshot] = None


# RESULTS

@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Frozen copy of the session state a result was computed from."""

    session_id: str
    user_id: str
    subject_id: str
    questions: Tuple[Question, ...]
    responses: Tuple[AnswerSlot, ...]
    started_at: datetime
    completed_at: datetime
    completion_reason: CompletionReason


@dataclass(frozen=True, slots=True)
class QuizResult:
    """Authoritative, immutable outcome of one session."""

    final_score: int
    weak_areas: Tuple[str, ...]
    source_of_truth: SourceOfTruth
    session: SessionSnapshot
    analytics: Optional[AnalyticsSnapshot] = None

    @property
    def responses(self) -> Tuple[AnswerSlot, ...]:
        return self.session.responses

    @property
    def total_questions(self) -> int:
        return len(self.session.questions)
