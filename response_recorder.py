"""Per-session answer bookkeeping and per-visit elapsed-time measurement."""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Tuple

from quiz_errors import OutOfRangeAnswer
from quiz_models import UNANSWERED, Answered, AnswerSlot, Question, Response


class ResponseRecorder:
    """
    Holds one answer slot per question.

    Elapsed time is measured from the moment a question last became
    current, so revisiting a question restarts its clock. Re-answering
    overwrites the slot; only the latest value is ever graded.
    """

    def __init__(
        self,
        questions: Tuple[Question, ...],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._questions = questions
        self._clock = clock
        self._slots: List[AnswerSlot] = [UNANSWERED] * len(questions)
        self._shown_at: List[Optional[float]] = [None] * len(questions)

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def slots(self) -> Tuple[AnswerSlot, ...]:
        return tuple(self._slots)

    def mark_shown(self, position: int) -> None:
        """Start a fresh visit clock for the question at ``position``."""
        self._check_position(position)
        self._shown_at[position] = self._clock()

    def elapsed(self, position: int) -> float:
        shown_at = self._shown_at[position]
        if shown_at is None:
            return 0.0
        return max(0.0, self._clock() - shown_at)

    def record(self, position: int, option_index: int) -> Response:
        """
        Store an answer, replacing any previous one at the same position.

        Args:
            position: Question index
            option_index: Selected option index for that question

        Returns:
            Response describing the stored answer

        Raises:
            OutOfRangeAnswer: If either index is out of bounds
        """
        self._check_position(position)
        options = self._questions[position].options
        if not 0 <= option_index < len(options):
            raise OutOfRangeAnswer(
                f"Option {option_index} out of range for question {position} "
                f"with {len(options)} options"
            )

        spent = self.elapsed(position)
        self._slots[position] = Answered(option_index)
        return Response(
            question_index=position,
            selected_option_index=option_index,
            time_spent_seconds=spent,
        )

    def answered_count(self) -> int:
        return sum(1 for slot in self._slots if isinstance(slot, Answered))

    def _check_position(self, position: int) -> None:
        if not 0 <= position < len(self._slots):
            raise OutOfRangeAnswer(
                f"Position {position} out of range for {len(self._slots)} questions"
            )
