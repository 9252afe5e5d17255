import asyncio

import pytest
from fastapi.testclient import TestClient

import fastapi_app
from question_bank import QuestionBank
from quiz_models import AnalyticsSnapshot, FinalAnalytics, Question
from quiz_service import QuizService
from result_store import ResultStore
from settings import Settings


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAnalytics:
    """Scriptable analytics collaborator that records every call."""

    def __init__(self):
        self.opened = []
        self.events = []
        self.finalized = []
        self.released = []
        self.submit_delays = []
        self.fail_open = False
        self.fail_submit = False
        self.fail_finalize = False
        self.fail_release = False
        self.final_score = 80
        self.weak_areas = ("Loops", "Functions")

    async def open_session(self, user_id, subject_id):
        self.opened.append((user_id, subject_id))
        if self.fail_open:
            raise ConnectionError("analytics down")
        return f"tok-{len(self.opened)}"

    async def submit_response(self, token, event):
        delay = self.submit_delays.pop(0) if self.submit_delays else 0
        if delay:
            await asyncio.sleep(delay)
        if self.fail_submit:
            raise ConnectionError("analytics down")
        self.events.append((token, event))
        return AnalyticsSnapshot(
            mastery_score=min(100, 10 * len(self.events)),
            mastery_level="Developing",
            learning_velocity=50,
            retention_rate=50,
        )

    async def finalize_session(self, token):
        self.finalized.append(token)
        if self.fail_finalize:
            raise ConnectionError("analytics down")
        return FinalAnalytics(
            final_score=self.final_score,
            weak_areas=self.weak_areas,
            snapshot=AnalyticsSnapshot(
                mastery_score=self.final_score,
                mastery_level="Proficient",
                learning_velocity=60,
                retention_rate=70,
                weak_areas=self.weak_areas,
            ),
        )

    async def release_session(self, token):
        if self.fail_release:
            raise ConnectionError("analytics down")
        self.released.append(token)


def make_question(correct: int, category: str, options: int = 4) -> Question:
    return Question(
        prompt=f"{category} question {correct}",
        options=tuple(f"option {i}" for i in range(options)),
        correct_index=correct,
        category=category,
    )


@pytest.fixture
def question_factory():
    return make_question


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_analytics():
    return FakeAnalytics()


@pytest.fixture
def small_bank():
    """Four questions with correct indices 0..3 and distinct categories."""
    return QuestionBank({
        "four": [
            make_question(0, "Basics"),
            make_question(1, "Loops"),
            make_question(2, "Strings"),
            make_question(3, "Functions"),
        ],
    })


@pytest.fixture
def service(tmp_path, monkeypatch):
    """Fresh service with local scoring and a temporary results directory."""
    svc = QuizService(
        QuestionBank.from_file(fastapi_app.settings.question_bank_path),
        ResultStore(tmp_path / "results"),
        analytics=None,
        settings=Settings(results_dir=tmp_path / "results"),
    )
    monkeypatch.setattr(fastapi_app, "service", svc)
    return svc


@pytest.fixture
def client(service):
    """Shared FastAPI test client; one event loop for the whole test."""
    with TestClient(fastapi_app.app) as test_client:
        yield test_client
