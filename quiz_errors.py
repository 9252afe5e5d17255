"""
Error taxonomy for the quiz session engine.

Only InvalidSubject, OutOfRangeAnswer and SessionStateError are ever
raised back to callers of a session. AnalyticsUnavailable is produced by
collaborator adapters and absorbed by the session; PersistenceFailure is
raised by the result store and turned into a user-facing notice.
"""

from __future__ import annotations


class QuizError(Exception):
    """Base class for all quiz engine errors."""


class InvalidSubject(QuizError):
    """The question bank has no questions for the requested subject."""

    def __init__(self, subject_id: str) -> None:
        super().__init__(f"No questions available for subject '{subject_id}'")
        self.subject_id = subject_id


class OutOfRangeAnswer(QuizError):
    """A position or option index outside the question bounds."""


class SessionStateError(QuizError):
    """Operation not allowed in the session's current lifecycle state."""


class AnalyticsUnavailable(QuizError):
    """The analytics collaborator could not serve a request."""


class PersistenceFailure(QuizError):
    """Saving a quiz result failed."""
