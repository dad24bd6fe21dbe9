"""
Catalog Service - read access to questions and assessment definitions,
plus the authoring helpers used by the catalog routes.

The engines only ever call the read side (QuestionCatalog.get_question,
AssessmentStore.get_assessment / question_entries) inside their own
transaction, passing the open session in.
"""

import json
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session, joinedload

from examcore.errors import NotFound, ValidationError
from examcore.models.question import Question, QUESTION_TYPES, AUTO_GRADABLE_TYPES, DIFFICULTIES
from examcore.models.assessment import Assessment, AssessmentQuestion, ASSESSMENT_STATUSES
from examcore.logging_config import get_logger, log_with_context
from examcore.timeutils import utcnow

db_logger = get_logger("db")


class QuestionCatalog:
    """Read-only view of catalog questions."""

    def get_question(self, db: Session, question_id: str) -> Question:
        question = db.get(Question, question_id)
        if question is None:
            raise NotFound("Question not found", question_id=question_id)
        return question


class AssessmentStore:
    """Read-only view of assessment definitions."""

    def get_assessment(self, db: Session, assessment_id: str, for_update: bool = False) -> Assessment:
        assessment = db.get(Assessment, assessment_id, with_for_update=for_update or None)
        if assessment is None:
            raise NotFound("Assessment not found", assessment_id=assessment_id)
        return assessment

    def question_entries(self, db: Session, assessment: Assessment) -> List[Tuple[str, int]]:
        """Ordered (question_id, effective_points) pairs of an assessment."""
        entries = db.query(AssessmentQuestion).options(
            joinedload(AssessmentQuestion.question)
        ).filter(
            AssessmentQuestion.assessment_id == assessment.id
        ).order_by(AssessmentQuestion.position).all()
        return [(e.question_id, e.effective_points) for e in entries]


# ── Authoring ─────────────────────────────────────────────────

def create_question(db: Session, *, type: str, content: dict, options: list = None,
                    correct_answer=None, difficulty: str = "medium", tags: list = None,
                    points: int = 1, time_estimate: int = None,
                    created_by: str = None) -> Question:
    """Validate and insert a question. Caller commits."""
    if type not in QUESTION_TYPES:
        raise ValidationError("Unknown question type: {}".format(type))
    content = content or {}
    if not (content.get("text") or content.get("code")):
        raise ValidationError("Question content needs text or code")
    if difficulty not in DIFFICULTIES:
        raise ValidationError("Unknown difficulty: {}".format(difficulty))
    if points is None or points < 1:
        raise ValidationError("Question points must be a positive integer")

    options = options or []
    option_ids = [o.get("id") for o in options]
    if any(not oid for oid in option_ids):
        raise ValidationError("Every option needs an id")
    if len(set(option_ids)) != len(option_ids):
        raise ValidationError("Option ids must be unique")
    if type in AUTO_GRADABLE_TYPES and not any(o.get("isCorrect") for o in options):
        raise ValidationError("Auto-graded questions need at least one correct option")

    question = Question(
        type=type,
        content_text=content.get("text"),
        content_image=content.get("image"),
        content_code=content.get("code"),
        options=json.dumps([
            {"id": o.get("id"), "text": o.get("text"), "isCorrect": bool(o.get("isCorrect"))}
            for o in options
        ]),
        correct_answer=json.dumps(correct_answer) if correct_answer is not None else None,
        difficulty=difficulty,
        tags=json.dumps(tags or []),
        points=points,
        time_estimate=time_estimate,
        created_by=created_by,
        created_at=utcnow(),
    )
    db.add(question)
    db.flush()

    log_with_context(db_logger, "INFO", "Created question ({})".format(type),
                     context={"question_id": str(question.id), "user_id": created_by})
    return question


def create_assessment(db: Session, *, title: str, duration: int, questions: list,
                      passing_score: int = 0, description: str = None,
                      instructions: str = None, randomize_questions: bool = False,
                      allowed_attempts: int = 1, proctoring: dict = None,
                      start_time: Optional[datetime] = None,
                      end_time: Optional[datetime] = None,
                      status: str = "draft", created_by: str = None) -> Assessment:
    """
    Validate and insert an assessment with its ordered question list.

    questions: [{"question_id": str, "points": Optional[int]}, ...]
    total_points is derived from the effective points of each entry.
    """
    if not title or not title.strip():
        raise ValidationError("Assessment title is required")
    if duration is None or duration <= 0:
        raise ValidationError("Duration must be a positive number of minutes")
    if allowed_attempts is None or allowed_attempts < 1:
        raise ValidationError("allowed_attempts must be at least 1")
    if status not in ASSESSMENT_STATUSES:
        raise ValidationError("Unknown assessment status: {}".format(status))
    if start_time and end_time and start_time >= end_time:
        raise ValidationError("start_time must be before end_time")
    if passing_score is not None and passing_score < 0:
        raise ValidationError("passing_score cannot be negative")
    if status == "published" and not questions:
        raise ValidationError("A published assessment needs at least one question")

    question_ids = [q.get("question_id") for q in questions]
    if len(set(question_ids)) != len(question_ids):
        raise ValidationError("An assessment cannot list the same question twice")

    catalog = QuestionCatalog()
    entries = []
    total_points = 0
    for position, item in enumerate(questions):
        question = catalog.get_question(db, item.get("question_id"))
        override = item.get("points")
        if override is not None and override < 0:
            raise ValidationError("Point overrides cannot be negative")
        effective = override if override is not None else question.points
        total_points += effective
        entries.append(AssessmentQuestion(question_id=question.id, position=position, points=override))

    if (passing_score or 0) > total_points:
        raise ValidationError("passing_score ({}) exceeds total points ({})".format(passing_score, total_points),
                              passing_score=passing_score, total_points=total_points)

    proctoring = proctoring or {}
    now = utcnow()
    assessment = Assessment(
        title=title.strip(),
        description=description,
        instructions=instructions,
        duration_minutes=duration,
        total_points=total_points,
        passing_score=passing_score or 0,
        randomize_questions=bool(randomize_questions),
        allowed_attempts=allowed_attempts,
        proctoring_enabled=bool(proctoring.get("enabled")),
        webcam_required=bool(proctoring.get("webcamRequired")),
        screensharing_required=bool(proctoring.get("screensharingRequired")),
        lockdown_browser_required=bool(proctoring.get("lockdownBrowserRequired")),
        start_time=start_time,
        end_time=end_time,
        status=status,
        created_by=created_by,
        created_at=now,
        updated_at=now,
        questions=entries,
    )
    db.add(assessment)
    db.flush()

    log_with_context(db_logger, "INFO", "Created assessment: {}".format(assessment.title),
                     context={"assessment_id": str(assessment.id), "user_id": created_by},
                     extra_data={"questions": len(entries), "total_points": total_points})
    return assessment


def set_assessment_status(db: Session, assessment_id: str, status: str) -> Assessment:
    """Move an assessment between draft, published and archived. Caller commits."""
    if status not in ASSESSMENT_STATUSES:
        raise ValidationError("Unknown assessment status: {}".format(status))
    assessment = AssessmentStore().get_assessment(db, assessment_id)
    if status == "published" and not assessment.questions:
        raise ValidationError("A published assessment needs at least one question",
                              assessment_id=assessment_id)
    previous = assessment.status
    assessment.status = status
    assessment.updated_at = utcnow()

    log_with_context(db_logger, "INFO", "Assessment status {} -> {}".format(previous, status),
                     context={"assessment_id": str(assessment.id)})
    return assessment
