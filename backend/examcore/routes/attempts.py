"""
Attempts API routes - thin HTTP layer over the attempt engine.

Provides endpoints for:
- Starting an attempt on a published assessment
- Reading the attempt's questions (answer key hidden until it ends)
- Submitting answers one question at a time
- Finishing an attempt and reading its result
- Explicit time-limit checks, administrative abandon and expiry sweeps

Business-rule violations raised by the engine are turned into JSON error
responses by the exception handler registered in main.py.
"""

import time
from typing import Any, List, Union
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from examcore.auth import Identity, get_current_user, require_elevated
from examcore.deps import get_attempt_engine
from examcore.schemas import AttemptResult, AttemptResultDetail, AttemptQuestionView
from examcore.services.attempt_engine import AttemptEngine
from examcore.logging_config import get_logger, log_with_context

router = APIRouter()
logger = get_logger("http")


# ── Pydantic schemas ─────────────────────────────────────────

class AnswerRequest(BaseModel):
    """Schema for submitting one answer."""
    question_id: str = Field(..., description="Question being answered")
    answer: Union[List[Any], str, bool, int, float] = Field(
        ..., description="Option IDs (multiple-choice), option ID, true/false or free text")


@router.post("/api/assessments/{assessment_id}/attempts", status_code=201)
def start_attempt(assessment_id: str,
                  identity: Identity = Depends(get_current_user),
                  engine: AttemptEngine = Depends(get_attempt_engine)):
    """Start a new attempt for the calling user."""
    attempt = engine.start_attempt(assessment_id, identity.user_id)

    return {
        "message": "Assessment attempt started",
        "attempt_id": attempt.id,
        "attempt_number": attempt.attempt_number,
        "questions": [
            {"id": slot.question_id, "points": slot.max_points}
            for slot in attempt.slots
        ],
        "started_at": attempt.started_at.isoformat(),
        "expires_at": attempt.expires_at.isoformat(),
    }


@router.post("/api/attempts/{attempt_id}/answers")
def submit_answer(attempt_id: str, request: AnswerRequest,
                  identity: Identity = Depends(get_current_user),
                  engine: AttemptEngine = Depends(get_attempt_engine)):
    """Record an answer; correctness is not revealed while the attempt runs."""
    engine.submit_answer(attempt_id, identity.user_id, request.question_id, request.answer)
    return {"message": "Answer submitted successfully"}


@router.post("/api/attempts/{attempt_id}/submit", response_model=AttemptResult)
def finish_attempt(attempt_id: str,
                   identity: Identity = Depends(get_current_user),
                   engine: AttemptEngine = Depends(get_attempt_engine)):
    """Finish the attempt and return the final score."""
    return engine.finish_attempt(attempt_id, identity.user_id)


@router.post("/api/attempts/{attempt_id}/time-check")
def check_time_limit(attempt_id: str,
                     identity: Identity = Depends(get_current_user),
                     engine: AttemptEngine = Depends(get_attempt_engine)):
    """Time the attempt out if its budget has elapsed."""
    owner = None if identity.is_elevated else identity.user_id
    timed_out = engine.check_time_limit(attempt_id, owner)
    return {"attempt_id": attempt_id, "timed_out": timed_out}


@router.get("/api/attempts/{attempt_id}/questions", response_model=List[AttemptQuestionView],
            response_model_exclude_none=True)
def get_attempt_questions(attempt_id: str,
                          identity: Identity = Depends(get_current_user),
                          engine: AttemptEngine = Depends(get_attempt_engine)):
    """Questions of the caller's attempt in the order they were dealt."""
    return engine.get_attempt_questions(attempt_id, identity.user_id)


@router.get("/api/attempts/{attempt_id}/results", response_model=AttemptResultDetail)
def get_attempt_result(attempt_id: str,
                       identity: Identity = Depends(get_current_user),
                       engine: AttemptEngine = Depends(get_attempt_engine)):
    """Result view for the owner, the assessment author or an admin."""
    return engine.get_attempt_result(attempt_id, identity.user_id, identity.role)


@router.post("/api/attempts/{attempt_id}/abandon")
def abandon_attempt(attempt_id: str,
                    identity: Identity = Depends(require_elevated),
                    engine: AttemptEngine = Depends(get_attempt_engine)):
    """Administratively close an in-progress attempt."""
    attempt = engine.abandon_attempt(attempt_id, identity.role)

    log_with_context(logger, "INFO", "Attempt {} abandoned".format(attempt_id),
                     context={"attempt_id": attempt_id, "user_id": identity.user_id})
    return {"attempt_id": attempt.id, "status": attempt.status,
            "ended_at": attempt.ended_at.isoformat() if attempt.ended_at else None}


@router.post("/api/attempts/sweep")
def sweep_expired(identity: Identity = Depends(require_elevated),
                  engine: AttemptEngine = Depends(get_attempt_engine)):
    """Time out every overdue in-progress attempt."""
    start_time = time.time()
    timed_out = engine.sweep_expired()

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO", "Expiry sweep finished: {} timed out".format(timed_out),
                     extra_data={"duration_ms": round(duration_ms, 2)})
    return {"timed_out": timed_out}
