"""JSON-file persistence for completed assessment results."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Tuple, Union

from quiz_errors import PersistenceFailure
from quiz_models import QuizResult, UserProfile

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SkillResultRecord:
    """What gets saved for a user's completed assessment."""

    attempt_id: str
    user_id: str
    subject_id: str
    score: int
    weak_areas: Tuple[str, ...]
    total_questions: int
    source_of_truth: str
    finalized_reason: str
    created_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))

    @staticmethod
    def from_result(result: QuizResult, profile: UserProfile) -> "SkillResultRecord":
        return SkillResultRecord(
            attempt_id=result.session.session_id,
            user_id=profile.id,
            subject_id=result.session.subject_id,
            score=result.final_score,
            weak_areas=result.weak_areas,
            total_questions=result.total_questions,
            source_of_truth=result.source_of_truth.value,
            finalized_reason=result.session.completion_reason.value,
        )


class ResultStore:
    """
    Stores one JSON document per attempt.

    Layout: ``<base_dir>/scores/<attempt_id>.json``.
    """

    def __init__(self, base_dir: Union[str, Path]) -> None:
        self._scores_dir = Path(base_dir) / "scores"

    def save(self, record: SkillResultRecord) -> Path:
        """
        Write a record.

        Raises:
            PersistenceFailure: If the file cannot be written
        """
        target = self._scores_dir / f"{record.attempt_id}.json"
        data = asdict(record)
        data["weak_areas"] = list(record.weak_areas)
        try:
            self._scores_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            LOGGER.error("Saving result %s failed: %s", record.attempt_id, exc)
            raise PersistenceFailure(f"Could not save result {record.attempt_id}") from exc

        LOGGER.info("Saved result %s for user %s", record.attempt_id, record.user_id)
        return target

    def load_for_user(self, user_id: str) -> List[dict]:
        """All saved results for a user, oldest first."""
        if not self._scores_dir.exists():
            return []
        records = []
        for path in sorted(self._scores_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                LOGGER.error("Skipping unreadable result file %s: %s", path, exc)
                continue
            if data.get("user_id") == user_id:
                records.append(data)
        records.sort(key=lambda item: item.get("created_at", ""))
        return records
