"""Read-only question bank loaded from a JSON file keyed by subject."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, Sequence, Tuple, Union

from quiz_models import Question

LOGGER = logging.getLogger(__name__)


class QuestionSource(Protocol):
    """Lookup used by quiz sessions; an empty result means unknown subject."""

    def get_questions(self, subject_id: str) -> Sequence[Question]:
        ...


class QuestionBank:
    """Ordered questions per subject."""

    def __init__(self, questions_by_subject: Dict[str, Iterable[Question]]) -> None:
        self._questions: Dict[str, Tuple[Question, ...]] = {
            subject: tuple(questions)
            for subject, questions in questions_by_subject.items()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, List[Dict]]) -> "QuestionBank":
        """
        Build a bank from raw JSON data.

        Args:
            data: Mapping of subject id to a list of question objects

        Raises:
            ValueError: If any question is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("Question bank must be a mapping of subject to questions")

        parsed: Dict[str, List[Question]] = {}
        for subject, items in data.items():
            questions = []
            for position, item in enumerate(items):
                try:
                    questions.append(Question.from_dict(item))
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"{subject}[{position}]: {exc}") from exc
            parsed[subject] = questions
        return cls(parsed)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "QuestionBank":
        path = Path(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        bank = cls.from_dict(data)
        LOGGER.info(
            "Loaded %d subjects (%d questions) from %s",
            len(bank._questions),
            sum(len(q) for q in bank._questions.values()),
            path,
        )
        return bank

    def get_questions(self, subject_id: str) -> Tuple[Question, ...]:
        return self._questions.get(subject_id, ())

    def subjects(self) -> Dict[str, int]:
        """Subject ids with their question counts."""
        return {subject: len(questions) for subject, questions in self._questions.items()}
