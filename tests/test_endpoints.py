"""Test coverage for FastAPI endpoints."""
import time

import pytest

from analytics_service import MasteryAnalyticsEngine
from result_store import ResultStore

PROFILE = {"id": "p-1", "name": "Ada Lovelace"}


def start(client, subject="python", **extra):
    response = client.post("/api/quiz/start", json={"subject_id": subject, **extra})
    assert response.status_code == 200
    return response.json()


def answer_all_correctly(client, session_id, service):
    session = service.get(session_id)
    for position, question in enumerate(session.questions):
        client.post(
            f"/api/quiz/{session_id}/answer",
            json={"position": position, "option_index": question.correct_index},
        )


class TestHealthEndpoints:
    """Test health and catalogue endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "status" in response.json()

    def test_subjects(self, client):
        response = client.get("/api/subjects")
        assert response.status_code == 200
        subjects = {s["subject_id"]: s["question_count"] for s in response.json()["subjects"]}
        assert subjects["python"] == 10
        assert "sql" in subjects


class TestStart:
    """Test starting assessments."""

    def test_start_returns_first_question(self, client):
        data = start(client, user_id="u-1")

        assert data["status"] == "in_progress"
        assert data["user_id"] == "u-1"
        assert data["current_position"] == 0
        assert data["total_questions"] == 10
        assert data["responses"] == [None] * 10
        assert data["remaining_seconds"] == 900
        assert data["current_question"]["position"] == 0
        assert "correct" not in data["current_question"]
        assert data["result"] is None

    def test_full_battery_capped_at_question_count(self, client):
        subjects = {
            s["subject_id"]: s["question_count"]
            for s in client.get("/api/subjects").json()["subjects"]
        }
        assert subjects["computer_science"] > 35

        data = start(client, subject="computer_science")

        assert data["total_questions"] == 35
        assert data["responses"] == [None] * 35

    def test_anonymous_user(self, client):
        assert start(client)["user_id"] == "anonymous"

    def test_invalid_subject(self, client):
        response = client.post("/api/quiz/start", json={"subject_id": "klingon"})
        assert response.status_code == 404

    def test_new_start_abandons_previous_session_of_user(self, client, service):
        first = start(client, user_id="u-1")
        second = start(client, user_id="u-1")

        assert first["session_id"] != second["session_id"]
        assert client.get(f"/api/quiz/{first['session_id']}").status_code == 404
        assert service.active_sessions == 1


class TestAnswers:
    """Test answer submission."""

    def test_answer_current_question(self, client):
        session_id = start(client)["session_id"]

        response = client.post(f"/api/quiz/{session_id}/answer", json={"option_index": 1})

        assert response.status_code == 200
        assert response.json()["position"] == 0
        assert response.json()["answered_count"] == 1
        view = client.get(f"/api/quiz/{session_id}").json()
        assert view["responses"][0] == 1

    def test_out_of_range_answer(self, client):
        session_id = start(client)["session_id"]

        response = client.post(f"/api/quiz/{session_id}/answer", json={"option_index": 9})

        assert response.status_code == 422
        assert client.get(f"/api/quiz/{session_id}").json()["responses"][0] is None

    def test_unknown_session(self, client):
        response = client.post("/api/quiz/missing/answer", json={"option_index": 0})
        assert response.status_code == 404


class TestNavigation:
    """Test navigation endpoints."""

    def test_next_previous_and_navigate(self, client):
        session_id = start(client)["session_id"]

        assert client.post(f"/api/quiz/{session_id}/next").json()["current_position"] == 1
        assert client.post(f"/api/quiz/{session_id}/previous").json()["current_position"] == 0
        response = client.post(f"/api/quiz/{session_id}/navigate", json={"position": 9})
        assert response.json()["current_position"] == 9

    def test_navigate_out_of_range(self, client):
        session_id = start(client)["session_id"]

        response = client.post(f"/api/quiz/{session_id}/navigate", json={"position": 10})

        assert response.status_code == 422

    def test_next_on_last_question_completes(self, client):
        session_id = start(client)["session_id"]
        client.post(f"/api/quiz/{session_id}/navigate", json={"position": 9})

        data = client.post(f"/api/quiz/{session_id}/next").json()

        assert data["status"] == "completed"
        assert data["result"]["completion_reason"] == "completed"


class TestCompletion:
    """Test completion, scoring and persistence."""

    def test_local_scoring(self, client, service):
        session_id = start(client)["session_id"]
        session = service.get(session_id)
        for position in range(3):
            client.post(
                f"/api/quiz/{session_id}/answer",
                json={"position": position, "option_index": session.questions[position].correct_index},
            )

        data = client.post(f"/api/quiz/{session_id}/complete").json()

        assert data["status"] == "completed"
        assert data["current_question"] is None
        result = data["result"]
        assert result["final_score"] == 30
        assert result["source_of_truth"] == "local_fallback"
        assert len(result["weak_areas"]) <= 5
        assert data["saved"] is False

    def test_complete_twice_is_stable(self, client):
        session_id = start(client)["session_id"]

        first = client.post(f"/api/quiz/{session_id}/complete").json()["result"]
        second = client.post(f"/api/quiz/{session_id}/complete").json()["result"]

        assert first == second

    def test_answer_after_completion_conflicts(self, client):
        session_id = start(client)["session_id"]
        client.post(f"/api/quiz/{session_id}/complete")

        response = client.post(f"/api/quiz/{session_id}/answer", json={"option_index": 0})

        assert response.status_code == 409

    def test_result_saved_for_profile(self, client, service):
        session_id = start(client, profile=PROFILE)["session_id"]
        answer_all_correctly(client, session_id, service)

        data = client.post(f"/api/quiz/{session_id}/complete").json()

        assert data["saved"] is True
        assert data["notice"] is None
        saved = client.get("/api/results/p-1").json()["results"]
        assert len(saved) == 1
        assert saved[0]["score"] == 100
        assert saved[0]["total_questions"] == 10

    def test_save_failure_is_a_notice(self, client, service, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("x", encoding="utf-8")
        service.result_store = ResultStore(blocker)
        session_id = start(client, profile=PROFILE)["session_id"]

        data = client.post(f"/api/quiz/{session_id}/complete").json()

        assert data["status"] == "completed"
        assert data["result"]["final_score"] == 0
        assert data["saved"] is False
        assert data["notice"]

    def test_analytics_derived_result(self, client, service):
        service.analytics = MasteryAnalyticsEngine()
        data = start(client, user_id="u-7")
        assert data["analytics_enabled"] is True
        session_id = data["session_id"]
        client.post(f"/api/quiz/{session_id}/answer", json={"option_index": 1})

        result = client.post(f"/api/quiz/{session_id}/complete").json()["result"]

        assert result["source_of_truth"] == "analytics_derived"
        assert 0 <= result["final_score"] <= 100
        assert result["analytics"]["mastery_level"]

    def test_deadline_completes_session(self, client, service):
        service.settings = service.settings.model_copy(update={"duration_seconds": 1})
        service.tick_seconds = 0.01
        session_id = start(client, profile=PROFILE)["session_id"]

        data = None
        for _ in range(50):
            time.sleep(0.02)
            data = client.get(f"/api/quiz/{session_id}").json()
            if data["status"] == "completed":
                break

        assert data["status"] == "completed"
        assert data["result"]["completion_reason"] == "timeout"
        assert data["saved"] is True


class TestCertificate:
    """Test certificate downloads."""

    def test_certificate_after_completion(self, client):
        session_id = start(client, profile=PROFILE)["session_id"]
        client.post(f"/api/quiz/{session_id}/complete")

        response = client.get(f"/api/quiz/{session_id}/certificate")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")

    def test_certificate_before_completion(self, client):
        session_id = start(client, profile=PROFILE)["session_id"]

        assert client.get(f"/api/quiz/{session_id}/certificate").status_code == 409

    def test_certificate_requires_profile(self, client):
        session_id = start(client)["session_id"]
        client.post(f"/api/quiz/{session_id}/complete")

        assert client.get(f"/api/quiz/{session_id}/certificate").status_code == 409


class TestAssessmentManagement:
    """Test assessment lifecycle management."""

    def test_restart(self, client):
        old = start(client, user_id="u-2")
        client.post(f"/api/quiz/{old['session_id']}/answer", json={"option_index": 0})

        new = client.post(f"/api/quiz/{old['session_id']}/restart").json()

        assert new["session_id"] != old["session_id"]
        assert new["subject_id"] == "python"
        assert new["user_id"] == "u-2"
        assert new["responses"] == [None] * 10
        assert new["remaining_seconds"] == 900
        assert client.get(f"/api/quiz/{old['session_id']}").status_code == 404

    def test_delete_assessment(self, client, service):
        session_id = start(client)["session_id"]
        session = service.get(session_id)

        response = client.delete(f"/api/quiz/{session_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "deleted"
        assert session.status.value == "abandoned"

        response = client.get(f"/api/quiz/{session_id}")
        assert response.status_code == 404

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/quiz/nonexistent_id"),
        ("delete", "/api/quiz/nonexistent_id"),
        ("post", "/api/quiz/nonexistent_id/complete"),
        ("post", "/api/quiz/nonexistent_id/restart"),
        ("get", "/api/quiz/nonexistent_id/certificate"),
    ])
    def test_nonexistent_assessment(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 404
