"""FinQuest HTTP API.

Identity comes from the ``X-User-Id`` header set by the upstream auth
layer; this service trusts it and does not issue credentials.
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

import db
from content_generator import ContentGenerator
from engines.adaptive import AdaptiveService
from engines.errors import InvalidRequestError, NotFoundError, UpstreamError
from engines.gamification import CHALLENGE_TYPES, GamificationEngine
from engines.leaderboard import LEADERBOARD_TYPES, TIMEFRAMES
from engines.mastery import MasteryTracker
from engines.quiz_session import QuizSessionOrchestrator
from engines.reward import Outcome
from repositories import Repositories
from schemas import (
    AdaptiveQuizBody,
    FeedbackBody,
    HintBody,
    RegisterBody,
    StartQuizBody,
    SubmitAnswerBody,
    UpdateModelBody,
    UpdateModelResponse,
)
from settings import load_settings

logger = logging.getLogger(__name__)

_CONTENT_LOGGER = logging.getLogger("finquest.content")
if not _CONTENT_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _CONTENT_LOGGER.addHandler(_handler)
_CONTENT_LOGGER.setLevel(logging.INFO)
_CONTENT_LOGGER.propagate = False


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        path = os.environ.get("DB_PATH", db.DB_PATH)
        if path != db.DB_PATH:
            db.configure(path)
        db.init()
        logger.info("FinQuest ready (db=%s, content generator %s)",
                    db.DB_PATH, "enabled" if GENERATOR.enabled else "disabled")
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="FinQuest", version="1.0.0", lifespan=_lifespan)

SETTINGS = load_settings()
REPOS = Repositories()
GENERATOR = ContentGenerator()
GAMIFICATION = GamificationEngine(REPOS, SETTINGS.gamification, SETTINGS.mastery)
MASTERY = MasteryTracker(REPOS.mastery, SETTINGS.mastery)
QUIZ = QuizSessionOrchestrator(REPOS, SETTINGS, gamification=GAMIFICATION, mastery=MASTERY)
ADAPTIVE = AdaptiveService(REPOS, SETTINGS, mastery=MASTERY, generator=GENERATOR)

_PUBLIC_PATHS = frozenset({"/", "/health", "/docs", "/openapi.json", "/redoc"})


def _normalize_path(path: str) -> str:
    if not path or path == "/":
        return "/"
    return path.rstrip("/")


@app.middleware("http")
async def _require_user(request: Request, call_next):
    if _normalize_path(request.url.path) in _PUBLIC_PATHS:
        return await call_next(request)
    user_id = (request.headers.get("x-user-id") or "").strip()
    if not user_id:
        return Response(
            status_code=401,
            content=json.dumps({"detail": "missing user identity"}),
            media_type="application/json",
        )
    request.state.user_id = user_id
    return await call_next(request)


@app.exception_handler(NotFoundError)
async def _not_found(_: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidRequestError)
async def _invalid(_: Request, exc: InvalidRequestError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UpstreamError)
async def _upstream(_: Request, exc: UpstreamError):
    logger.error("Upstream failure: %s", exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def _user(request: Request) -> str:
    return request.state.user_id


@app.get("/")
def root():
    return {"service": "finquest", "version": app.version}


@app.get("/health")
def health():
    return {"ok": True}


# ---------- Users ----------
@app.post("/users/register")
def register(request: Request, body: RegisterBody):
    user = REPOS.users.create(
        _user(request),
        full_name=body.full_name,
        grade=body.grade,
        role=body.role,
        email=body.email,
        avatar_url=body.avatar_url,
    )
    stats = REPOS.stats.get(user.id)
    return {"user": asdict(user), "stats": stats.to_dict() if stats else None}


# ---------- Quiz ----------
@app.post("/quiz/start")
def quiz_start(request: Request, body: StartQuizBody):
    return QUIZ.start(_user(request), body.topic_id, body.session_type, body.question_count)


@app.post("/quiz/submit")
def quiz_submit(request: Request, body: SubmitAnswerBody):
    return QUIZ.submit_answer(
        _user(request),
        body.session_id,
        body.question_id,
        body.user_answer,
        body.time_spent,
        body.hints_used,
        body.confidence_level,
    )


@app.post("/quiz/complete/{session_id}")
def quiz_complete(request: Request, session_id: str):
    return QUIZ.complete(_user(request), session_id)


@app.get("/quiz/history")
def quiz_history(request: Request, limit: int = Query(default=10, ge=1, le=100)):
    return {"sessions": QUIZ.history(_user(request), limit)}


# ---------- Adaptive ----------
@app.post("/adaptive/quiz/generate")
def adaptive_generate(request: Request, body: AdaptiveQuizBody):
    context = body.session_context.model_dump(exclude_none=True) if body.session_context else None
    return ADAPTIVE.generate_adaptive_quiz(_user(request), body.topic_id, context)


@app.post("/adaptive/update-model", response_model=UpdateModelResponse)
def adaptive_update(request: Request, body: UpdateModelBody):
    outcome = Outcome(
        is_correct=body.is_correct,
        time_spent=body.time_spent,
        hints_used=body.hints_used,
        difficulty_level=body.difficulty_level,
        confidence_level=body.confidence_level,
    )
    return ADAPTIVE.update_learning_model(_user(request), body.topic_id, body.question_id, outcome)


@app.get("/adaptive/learning-path")
def adaptive_learning_path(request: Request):
    return ADAPTIVE.get_personalized_learning_path(_user(request))


@app.post("/adaptive/feedback")
def adaptive_feedback(request: Request, body: FeedbackBody):
    message = ADAPTIVE.generate_personalized_feedback(
        _user(request), body.question_id, body.is_correct, body.time_spent
    )
    return {"feedback": message}


@app.get("/adaptive/analysis/{topic_id}")
def adaptive_analysis(request: Request, topic_id: str):
    return ADAPTIVE.bandit.analyze_performance_pattern(_user(request), topic_id).to_dict()


@app.post("/adaptive/hint")
def adaptive_hint(request: Request, body: HintBody):
    return {"hint": ADAPTIVE.generate_hint(_user(request), body.question_id)}


# ---------- Gamification ----------
@app.get("/gamification/stats")
def gamification_stats(request: Request):
    return GAMIFICATION.get_user_game_stats(_user(request))


@app.get("/gamification/leaderboard/{board}")
def gamification_leaderboard(
    board: str,
    grade: Optional[int] = Query(default=None, ge=0, le=12),
    limit: int = Query(default=10, ge=1, le=100),
):
    if board not in LEADERBOARD_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of {', '.join(LEADERBOARD_TYPES)}")
    return {"type": board, "entries": GAMIFICATION.leaderboard.get_global_leaderboard(board, grade, limit)}


@app.get("/gamification/motivation")
def gamification_motivation(request: Request):
    return GAMIFICATION.get_user_motivation(_user(request))


@app.get("/gamification/badges")
def gamification_badges(request: Request):
    user_id = _user(request)
    earned = GAMIFICATION.badges.get_user_badges(user_id)
    earned_ids = {ub.badge.id for ub in earned}
    return {
        "earned": [ub.to_dict() for ub in earned],
        "available": [b.to_dict() for b in REPOS.badges.list_active() if b.id not in earned_ids],
    }


@app.get("/gamification/badges/{badge_id}/progress")
def gamification_badge_progress(request: Request, badge_id: str):
    return GAMIFICATION.badges.get_badge_progress(_user(request), badge_id)


@app.post("/gamification/challenge/{challenge_type}")
def gamification_challenge(request: Request, challenge_type: str):
    if challenge_type not in CHALLENGE_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of {', '.join(CHALLENGE_TYPES)}")
    return GAMIFICATION.create_custom_challenge(_user(request), challenge_type)


@app.get("/gamification/top-performers")
def gamification_top_performers(
    timeframe: str = Query(default="weekly"),
    limit: int = Query(default=5, ge=1, le=50),
):
    if timeframe not in TIMEFRAMES:
        raise HTTPException(status_code=400, detail=f"timeframe must be one of {', '.join(TIMEFRAMES)}")
    return {"timeframe": timeframe, "entries": GAMIFICATION.leaderboard.get_top_performers(timeframe, limit)}


# ---------- Curriculum ----------
@app.get("/curriculum/topics")
def curriculum_topics(grade: Optional[int] = Query(default=None, ge=0, le=12), subject_id: Optional[str] = None):
    return {"topics": [t.to_dict() for t in REPOS.curriculum.list_topics(grade, subject_id)]}


@app.get("/curriculum/topics/{topic_id}")
def curriculum_topic(topic_id: str):
    topic = REPOS.curriculum.get_topic(topic_id)
    if topic is None:
        raise NotFoundError("Topic not found")
    questions = [q for q in REPOS.curriculum.list_questions(topic_id) if not q.ai_generated]
    return {"topic": topic.to_dict(), "question_count": len(questions)}


@app.get("/curriculum/progress")
def curriculum_progress(request: Request):
    user_id = _user(request)
    return {
        "overview": MASTERY.progress_overview(user_id),
        "topics": [m.to_dict() for m in MASTERY.list_mastery(user_id)],
    }
