"""
Score resolution for completed sessions.

Two mutually exclusive paths: adopt the aggregate returned by the
analytics collaborator, or grade the latest recorded answers locally.
Either way weak areas are deduplicated in first-seen order and capped.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

from quiz_errors import AnalyticsUnavailable
from quiz_models import AnswerSlot, FinalAnalytics, Question, slot_value

MAX_WEAK_AREAS = 5


def percent(correct: int, total: int) -> int:
    """
    Percentage rounded half-up, computed with integers only.

    Args:
        correct: Number of correct answers
        total: Number of questions

    Returns:
        Integer in [0, 100]
    """
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def cap_weak_areas(areas: Iterable[str], limit: int = MAX_WEAK_AREAS) -> Tuple[str, ...]:
    """Deduplicate preserving first-seen order, then truncate to ``limit``."""
    seen = []
    for area in areas:
        if area not in seen:
            seen.append(area)
        if len(seen) == limit:
            break
    return tuple(seen)


def score_locally(
    questions: Sequence[Question],
    slots: Sequence[AnswerSlot],
) -> Tuple[int, Tuple[str, ...]]:
    """
    Grade the latest answer in every slot.

    Unanswered slots count as incorrect and contribute their category
    to the weak areas.

    Returns:
        (final_score, weak_areas)
    """
    if len(questions) != len(slots):
        raise ValueError("questions and slots must have the same length")

    correct_count = 0
    missed = []
    for question, slot in zip(questions, slots):
        if slot_value(slot) == question.correct_index:
            correct_count += 1
        else:
            missed.append(question.category)

    return percent(correct_count, len(questions)), cap_weak_areas(missed)


def adopt_analytics(final: FinalAnalytics) -> Tuple[int, Tuple[str, ...]]:
    """
    Take the collaborator's score verbatim and its ranked weak areas.

    Raises:
        AnalyticsUnavailable: If the score is not an integer in [0, 100]
    """
    score = final.final_score
    if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
        raise AnalyticsUnavailable(f"Analytics returned an invalid score: {score!r}")
    return score, cap_weak_areas(final.weak_areas)
