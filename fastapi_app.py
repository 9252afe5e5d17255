import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from analytics_service import create_analytics_collaborator
from question_bank import QuestionBank
from quiz_errors import InvalidSubject, OutOfRangeAnswer, QuizError, SessionStateError
from quiz_models import QuizResult, QuizStatus, UserProfile, slot_value
from quiz_service import QuizService
from quiz_session import QuizSession
from result_store import ResultStore
from settings import load_settings


# ENV & LOGGING

settings = load_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("assessment-api")


# SERVICES

analytics = create_analytics_collaborator(
    settings.analytics_enabled,
    settings.analytics_url,
    settings.analytics_timeout_seconds,
)
if analytics is None:
    logger.warning("Analytics disabled → local scoring only")
else:
    logger.info("Analytics enabled (%s)", type(analytics).__name__)

service = QuizService(
    QuestionBank.from_file(settings.question_bank_path),
    ResultStore(settings.results_dir),
    analytics,
    settings,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await service.shutdown()


# FASTAPI INIT

app = FastAPI(
    title="Skill Assessment API",
    version="1.0.0",
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic MODELS

class ProfileModel(BaseModel):
    id: str
    name: str


class StartRequest(BaseModel):
    subject_id: str
    user_id: Optional[str] = None
    profile: Optional[ProfileModel] = None


class AnswerRequest(BaseModel):
    option_index: int
    position: Optional[int] = None


class NavigateRequest(BaseModel):
    position: int


# VIEWS

def _result_view(result: QuizResult) -> Dict[str, Any]:
    return {
        "final_score": result.final_score,
        "weak_areas": list(result.weak_areas),
        "source_of_truth": result.source_of_truth.value,
        "total_questions": result.total_questions,
        "completion_reason": result.session.completion_reason.value,
        "completed_at": result.session.completed_at.isoformat(timespec="seconds"),
        "analytics": result.analytics.to_dict() if result.analytics else None,
    }


def _session_view(session: QuizSession) -> Dict[str, Any]:
    question = session.current_question
    in_progress = session.status is QuizStatus.IN_PROGRESS
    save = service.save_status(session.session_id)
    return {
        "session_id": session.session_id,
        "status": session.status.value,
        "subject_id": session.subject_id,
        "user_id": session.user_id,
        "current_position": session.current_position,
        "total_questions": len(session.questions),
        "answered_count": session.answered_count,
        "responses": [slot_value(slot) for slot in session.responses],
        "remaining_seconds": session.remaining_seconds,
        "deadline": session.deadline.isoformat(timespec="seconds") if session.deadline else None,
        "analytics_enabled": session.analytics_session_id is not None,
        "analytics": session.analytics_snapshot.to_dict() if session.analytics_snapshot else None,
        "current_question": {
            "position": session.current_position,
            "question": question.prompt,
            "options": list(question.options),
            "category": question.category,
        } if in_progress and question else None,
        "result": _result_view(session.result) if session.result else None,
        "saved": save.saved,
        "notice": save.notice,
    }


def _session_or_404(session_id: str) -> QuizSession:
    session = service.get(session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


def _http_error(exc: QuizError) -> HTTPException:
    if isinstance(exc, InvalidSubject):
        return HTTPException(404, str(exc))
    if isinstance(exc, OutOfRangeAnswer):
        return HTTPException(422, str(exc))
    if isinstance(exc, SessionStateError):
        return HTTPException(409, str(exc))
    return HTTPException(500, str(exc))


# HEALTH & DEBUG

@app.get("/")
async def root():
    return {"status": "running", "docs": "/api/docs"}


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "analytics_enabled": service.analytics is not None,
        "active_sessions": service.active_sessions,
        "tracked_sessions": service.tracked_sessions,
    }


@app.get("/api/subjects")
async def subjects():
    return {
        "subjects": [
            {"subject_id": subject, "question_count": count}
            for subject, count in service.question_bank.subjects().items()
        ]
    }


# QUIZ FLOW

@app.post("/api/quiz/start")
async def start_quiz(req: StartRequest):
    profile = UserProfile(id=req.profile.id, name=req.profile.name) if req.profile else None
    try:
        session = await service.start(req.subject_id, req.user_id, profile)
    except QuizError as exc:
        raise _http_error(exc) from exc
    return _session_view(session)


@app.get("/api/quiz/{session_id}")
async def get_quiz(session_id: str):
    return _session_view(_session_or_404(session_id))


@app.delete("/api/quiz/{session_id}")
async def delete_quiz(session_id: str):
    _session_or_404(session_id)
    service.discard(session_id)
    return {"status": "deleted"}


@app.post("/api/quiz/{session_id}/answer")
async def answer(session_id: str, req: AnswerRequest):
    session = _session_or_404(session_id)
    position = session.current_position if req.position is None else req.position
    try:
        recorded = session.record_answer(position, req.option_index)
    except QuizError as exc:
        raise _http_error(exc) from exc
    return {
        "position": recorded.question_index,
        "option_index": recorded.selected_option_index,
        "time_spent_seconds": round(recorded.time_spent_seconds, 3),
        "answered_count": session.answered_count,
    }


@app.post("/api/quiz/{session_id}/navigate")
async def navigate(session_id: str, req: NavigateRequest):
    session = _session_or_404(session_id)
    try:
        session.go_to(req.position)
    except QuizError as exc:
        raise _http_error(exc) from exc
    return _session_view(session)


@app.post("/api/quiz/{session_id}/next")
async def next_question(session_id: str):
    session = _session_or_404(session_id)
    try:
        await session.next_question()
    except QuizError as exc:
        raise _http_error(exc) from exc
    return _session_view(session)


@app.post("/api/quiz/{session_id}/previous")
async def previous_question(session_id: str):
    session = _session_or_404(session_id)
    try:
        session.previous_question()
    except QuizError as exc:
        raise _http_error(exc) from exc
    return _session_view(session)


@app.post("/api/quiz/{session_id}/complete")
async def complete(session_id: str):
    session = _session_or_404(session_id)
    try:
        await session.complete()
    except QuizError as exc:
        raise _http_error(exc) from exc
    return _session_view(session)


@app.post("/api/quiz/{session_id}/restart")
async def restart(session_id: str):
    _session_or_404(session_id)
    try:
        session = await service.restart(session_id)
    except QuizError as exc:
        raise _http_error(exc) from exc
    return _session_view(session)


@app.get("/api/quiz/{session_id}/certificate")
async def certificate(session_id: str):
    session = _session_or_404(session_id)
    try:
        pdf = await run_in_threadpool(service.certificate, session_id)
    except QuizError as exc:
        raise _http_error(exc) from exc
    filename = f"certificate-{session.subject_id}.pdf"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# RESULTS

@app.get("/api/results/{user_id}")
async def results(user_id: str) -> Dict[str, List[dict]]:
    saved = await run_in_threadpool(service.result_store.load_for_user, user_id)
    return {"results": saved}


# RUN

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fastapi_app:app",
        host="127.0.0.1",
        port=8001,
        reload=True
    )
