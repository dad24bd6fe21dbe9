"""
Catalog API routes - question and assessment authoring.

Instructor/admin only. These routes write the definitions the attempt
engine reads; the engines never modify them.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from examcore.auth import Identity, require_elevated
from examcore.deps import get_db
from examcore.errors import ValidationError
from examcore.services.catalog import create_question, create_assessment, set_assessment_status
from examcore.timeutils import parse_timestamp, isoformat

router = APIRouter()


# ── Pydantic schemas ─────────────────────────────────────────

class QuestionContent(BaseModel):
    text: Optional[str] = None
    image: Optional[str] = None
    code: Optional[str] = None


class QuestionOption(BaseModel):
    id: str
    text: str = ""
    isCorrect: bool = False


class QuestionRequest(BaseModel):
    """Schema for a new catalog question."""
    type: str = Field(..., description="multiple-choice, single-choice, true-false, "
                                        "fill-in-the-blank, essay or coding")
    content: QuestionContent
    options: List[QuestionOption] = Field(default_factory=list)
    correct_answer: Optional[str] = Field(None, description="Reference answer for manual grading")
    difficulty: str = "medium"
    tags: List[str] = Field(default_factory=list)
    points: int = 1
    time_estimate: Optional[int] = Field(None, description="Expected time in seconds")


class AssessmentQuestionRef(BaseModel):
    question_id: str
    points: Optional[int] = Field(None, description="Overrides the question's own points")


class ProctoringRequirements(BaseModel):
    enabled: bool = False
    webcamRequired: bool = False
    screensharingRequired: bool = False
    lockdownBrowserRequired: bool = False


class AssessmentRequest(BaseModel):
    """Schema for a new assessment."""
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    duration: int = Field(..., description="Time budget in minutes")
    questions: List[AssessmentQuestionRef]
    passing_score: int = Field(0, description="Points needed to pass")
    randomize_questions: bool = False
    allowed_attempts: int = 1
    proctoring: ProctoringRequirements = Field(default_factory=ProctoringRequirements)
    start_time: Optional[str] = Field(None, description="ISO 8601 window start")
    end_time: Optional[str] = Field(None, description="ISO 8601 window end")
    status: str = "draft"


class StatusRequest(BaseModel):
    status: str


def _window_bound(value: Optional[str], name: str):
    if not value:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError("{} is not a valid ISO 8601 timestamp".format(name))
    return parsed


@router.post("/api/questions", status_code=201)
def add_question(request: QuestionRequest,
                 identity: Identity = Depends(require_elevated),
                 db: Session = Depends(get_db)):
    question = create_question(
        db,
        type=request.type,
        content=request.content.model_dump(),
        options=[o.model_dump() for o in request.options],
        correct_answer=request.correct_answer,
        difficulty=request.difficulty,
        tags=request.tags,
        points=request.points,
        time_estimate=request.time_estimate,
        created_by=identity.user_id,
    )
    db.commit()
    return {"id": question.id, "type": question.type, "points": question.points}


@router.post("/api/assessments", status_code=201)
def add_assessment(request: AssessmentRequest,
                   identity: Identity = Depends(require_elevated),
                   db: Session = Depends(get_db)):
    assessment = create_assessment(
        db,
        title=request.title,
        duration=request.duration,
        questions=[q.model_dump() for q in request.questions],
        passing_score=request.passing_score,
        description=request.description,
        instructions=request.instructions,
        randomize_questions=request.randomize_questions,
        allowed_attempts=request.allowed_attempts,
        proctoring=request.proctoring.model_dump(),
        start_time=_window_bound(request.start_time, "start_time"),
        end_time=_window_bound(request.end_time, "end_time"),
        status=request.status,
        created_by=identity.user_id,
    )
    db.commit()
    return {
        "id": assessment.id,
        "title": assessment.title,
        "status": assessment.status,
        "total_points": assessment.total_points,
        "passing_score": assessment.passing_score,
        "start_time": isoformat(assessment.start_time),
        "end_time": isoformat(assessment.end_time),
    }


@router.post("/api/assessments/{assessment_id}/status")
def change_assessment_status(assessment_id: str, request: StatusRequest,
                             identity: Identity = Depends(require_elevated),
                             db: Session = Depends(get_db)):
    assessment = set_assessment_status(db, assessment_id, request.status)
    db.commit()
    return {"id": assessment.id, "status": assessment.status}
