"""
Attempt Engine - lifecycle, inline grading and final scoring of attempts.

State machine (every transition out of in-progress is terminal):

    in-progress --finish_attempt------------> completed
    in-progress --deadline passed-----------> timed-out
    in-progress --abandon_attempt (admin)---> abandoned

Concurrency model:
- Each operation runs in one database transaction; nothing is committed
  unless the whole operation succeeds.
- Every mutation of an attempt first executes a guarded
  ``UPDATE attempts ... WHERE id = :id AND status = 'in-progress'``. The
  statement takes the attempt's row lock and acts as a compare-and-set on
  status, so concurrent finalizations resolve to exactly one winner and the
  loser sees AlreadyFinalized.
- Starts lock the assessment row, and the attempt limit is backed by the
  unique (assessment_id, user_id, attempt_number) constraint; a start that
  still loses the race re-counts and either takes the next number or fails
  with AttemptLimitExceeded.
- Timeout is detected lazily from the durable expires_at column. The
  session cache record is a hint only.
"""

import json
import random
import time
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from examcore.errors import (
    NotFound, Forbidden, InvalidState, NotPublished, OutOfWindow,
    AlreadyFinalized, AttemptLimitExceeded, TimeExpired, UnknownQuestion,
    ValidationError
)
from examcore.models.assessment import Assessment, PUBLISHED
from examcore.models.attempt import Attempt, IN_PROGRESS, COMPLETED, TIMED_OUT, ABANDONED
from examcore.models.answer_slot import AnswerSlot
from examcore.roles import ADMIN, is_elevated
from examcore.schemas import (
    AttemptView, AnswerSlotView, AttemptResult, AttemptResultDetail,
    AttemptQuestionView, QuestionOptionView
)
from examcore.services.catalog import QuestionCatalog, AssessmentStore
from examcore.services.grading import grade_answer
from examcore.services.session_cache import attempt_key
from examcore.logging_config import get_logger, log_with_context
from examcore.timeutils import utcnow, isoformat

logger = get_logger("attempts")

# Extra retries, beyond one per allowed attempt, for a start that lost the
# attempt-number race
START_RETRIES = 5


def _slot_view(slot: AnswerSlot) -> AnswerSlotView:
    return AnswerSlotView(
        question_id=slot.question_id,
        position=slot.position,
        max_points=slot.max_points,
        answer=slot.answer_value,
        is_correct=slot.is_correct,
        points=slot.points,
        time_spent=slot.time_spent,
    )


def _attempt_view(attempt: Attempt) -> AttemptView:
    return AttemptView(
        id=attempt.id,
        assessment_id=attempt.assessment_id,
        user_id=attempt.user_id,
        attempt_number=attempt.attempt_number,
        status=attempt.status,
        started_at=attempt.started_at,
        expires_at=attempt.expires_at,
        ended_at=attempt.ended_at,
        completion_time=attempt.completion_time,
        total_score=attempt.total_score,
        max_possible_score=attempt.max_possible_score,
        slots=[_slot_view(s) for s in sorted(attempt.slots, key=lambda s: s.position)],
    )


def _result(attempt: Attempt, assessment: Assessment) -> AttemptResult:
    """Pass/fail compares points, not a percentage."""
    max_score = attempt.max_possible_score
    percentage = (attempt.total_score / max_score * 100) if max_score > 0 else 0.0
    return AttemptResult(
        attempt_id=attempt.id,
        status=attempt.status,
        total_score=attempt.total_score,
        max_possible_score=max_score,
        percentage=round(percentage, 2),
        passed=attempt.total_score >= assessment.passing_score,
        completion_time=attempt.completion_time,
    )


class AttemptEngine:
    """
    Owns Attempt and AnswerSlot state.

    Args:
        session_factory: callable returning a new SQLAlchemy Session
        cache: session cache with set/get/delete
        questions: question catalog collaborator
        assessments: assessment definition store collaborator
        clock: returns the current naive UTC datetime
        rng: random.Random used to shuffle question order
    """

    def __init__(self, session_factory, cache, questions: QuestionCatalog = None,
                 assessments: AssessmentStore = None, clock=utcnow,
                 rng: Optional[random.Random] = None):
        self.session_factory = session_factory
        self.cache = cache
        self.questions = questions or QuestionCatalog()
        self.assessments = assessments or AssessmentStore()
        self.clock = clock
        self.rng = rng or random.SystemRandom()

    # ── Start ─────────────────────────────────────────────────

    def start_attempt(self, assessment_id: str, user_id: str) -> AttemptView:
        """
        Create a new in-progress attempt with one slot per assessment question.

        Raises NotFound, NotPublished, OutOfWindow, AttemptLimitExceeded.
        A start that keeps losing the attempt-number race while still under
        the limit ends with InvalidState rather than a storage error.
        """
        retries = 0
        while True:
            try:
                return self._create_attempt(assessment_id, user_id)
            except IntegrityError:
                # Another start for the same user committed this attempt number
                used, allowed = self._attempt_usage(assessment_id, user_id)
                if used >= allowed:
                    raise AttemptLimitExceeded(
                        "Maximum attempts reached ({})".format(allowed),
                        assessment_id=assessment_id, user_id=user_id)

                retries += 1
                budget = allowed + START_RETRIES
                log_with_context(logger, "WARNING",
                    "Attempt number collision, retrying ({}/{})".format(retries, budget),
                    context={"assessment_id": assessment_id, "user_id": user_id},
                    extra_data={"attempts_used": used, "allowed_attempts": allowed})
                if retries >= budget:
                    raise InvalidState(
                        "Could not allocate an attempt number, try again",
                        assessment_id=assessment_id, user_id=user_id)

    def _attempt_usage(self, assessment_id: str, user_id: str):
        """(attempts already started, attempts allowed) for one user."""
        with self.session_factory() as db:
            assessment = self.assessments.get_assessment(db, assessment_id)
            used = db.query(func.count(Attempt.id)).filter(
                Attempt.assessment_id == assessment.id,
                Attempt.user_id == user_id
            ).scalar()
            return used, assessment.allowed_attempts

    def _create_attempt(self, assessment_id: str, user_id: str) -> AttemptView:
        start_time = time.time()
        now = self.clock()

        with self.session_factory() as db:
            with db.begin():
                # row lock on the assessment serializes starts on PostgreSQL
                assessment = self.assessments.get_assessment(db, assessment_id, for_update=True)

                if assessment.status != PUBLISHED:
                    raise NotPublished("Assessment is not published", assessment_id=assessment_id)

                if not assessment.is_open_at(now):
                    raise OutOfWindow("Assessment is not open at this time", assessment_id=assessment_id)

                prior_attempts = db.query(func.count(Attempt.id)).filter(
                    Attempt.assessment_id == assessment.id,
                    Attempt.user_id == user_id
                ).scalar()

                if prior_attempts >= assessment.allowed_attempts:
                    raise AttemptLimitExceeded(
                        "Maximum attempts reached ({})".format(assessment.allowed_attempts),
                        assessment_id=assessment_id, user_id=user_id)

                entries = list(self.assessments.question_entries(db, assessment))
                if assessment.randomize_questions:
                    # random.shuffle is a Fisher-Yates shuffle
                    self.rng.shuffle(entries)

                duration_seconds = assessment.duration_minutes * 60
                attempt = Attempt(
                    assessment_id=assessment.id,
                    user_id=user_id,
                    attempt_number=prior_attempts + 1,
                    started_at=now,
                    expires_at=now + timedelta(seconds=duration_seconds),
                    status=IN_PROGRESS,
                    total_score=0,
                    max_possible_score=assessment.total_points,
                    version=1,
                    slots=[
                        AnswerSlot(question_id=question_id, position=position,
                                   max_points=points, points=0, time_spent=0)
                        for position, (question_id, points) in enumerate(entries)
                    ],
                )
                db.add(attempt)
                db.flush()
                view = _attempt_view(attempt)

        self.cache.set(
            attempt_key(view.id),
            json.dumps({
                "assessmentId": view.assessment_id,
                "userId": view.user_id,
                "startTime": isoformat(view.started_at),
            }),
            duration_seconds,
        )

        log_with_context(logger, "INFO",
            "Attempt started (#{} of {})".format(view.attempt_number, assessment.allowed_attempts),
            context={"attempt_id": view.id, "assessment_id": view.assessment_id, "user_id": user_id},
            extra_data={
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "questions": len(view.slots),
                "randomized": bool(assessment.randomize_questions),
            })
        return view

    # ── Answers ───────────────────────────────────────────────

    def submit_answer(self, attempt_id: str, user_id: str, question_id: str, answer) -> None:
        """
        Record (or overwrite) the answer for one slot and auto-grade it.

        Raises NotFound, Forbidden, AlreadyFinalized, TimeExpired,
        UnknownQuestion, ValidationError. On TimeExpired the attempt has
        already been finalized as timed-out.
        """
        if answer is None:
            raise ValidationError("An answer value is required")
        try:
            stored_answer = json.dumps(answer)
        except (TypeError, ValueError):
            raise ValidationError("Answer must be JSON serializable")

        now = self.clock()
        expired = False

        with self.session_factory() as db:
            with db.begin():
                attempt = self._load_owned(db, attempt_id, user_id)
                self._require_in_progress(attempt)

                if now > attempt.expires_at:
                    self._finalize(db, attempt, TIMED_OUT, attempt.expires_at)
                    expired = True
                else:
                    self._claim(db, attempt)

                    slot = db.query(AnswerSlot).filter(
                        AnswerSlot.attempt_id == attempt.id,
                        AnswerSlot.question_id == question_id
                    ).first()
                    if slot is None:
                        raise UnknownQuestion("Question not found in this attempt",
                                              attempt_id=attempt_id, question_id=question_id)

                    question = self.questions.get_question(db, question_id)
                    outcome = grade_answer(question, answer, slot.max_points)
                    elapsed = int((now - attempt.started_at).total_seconds())

                    slot.answer = stored_answer
                    slot.is_correct = outcome.is_correct
                    slot.points = outcome.points
                    slot.time_spent = max(slot.time_spent or 0, elapsed)

        if expired:
            self.cache.delete(attempt_key(attempt_id))
            log_with_context(logger, "INFO", "Answer rejected: time limit exceeded",
                             context={"attempt_id": attempt_id, "user_id": user_id,
                                      "question_id": question_id})
            raise TimeExpired("Assessment time limit exceeded", attempt_id=attempt_id)

        log_with_context(logger, "INFO", "Answer recorded",
                         context={"attempt_id": attempt_id, "user_id": user_id,
                                  "question_id": question_id},
                         extra_data={"time_spent": elapsed})

    # ── Finalization ──────────────────────────────────────────

    def finish_attempt(self, attempt_id: str, user_id: str) -> AttemptResult:
        """
        Explicitly submit an attempt and compute its final score.

        Raises NotFound, Forbidden, AlreadyFinalized. If the time budget has
        already run out the attempt is finalized as timed-out instead and
        TimeExpired is raised.
        """
        now = self.clock()
        expired = False

        with self.session_factory() as db:
            with db.begin():
                attempt = self._load_owned(db, attempt_id, user_id)
                self._require_in_progress(attempt)

                if now > attempt.expires_at:
                    self._finalize(db, attempt, TIMED_OUT, attempt.expires_at)
                    expired = True
                else:
                    self._finalize(db, attempt, COMPLETED, now)
                    assessment = self.assessments.get_assessment(db, attempt.assessment_id)
                    result = _result(attempt, assessment)

        self.cache.delete(attempt_key(attempt_id))

        if expired:
            raise TimeExpired("Assessment time limit exceeded; attempt was timed out",
                              attempt_id=attempt_id)

        log_with_context(logger, "INFO",
            "Attempt completed: {}/{} (passed={})".format(
                result.total_score, result.max_possible_score, result.passed),
            context={"attempt_id": attempt_id, "user_id": user_id},
            extra_data={"completion_time": result.completion_time,
                        "percentage": result.percentage})
        return result

    def check_time_limit(self, attempt_id: str, user_id: Optional[str] = None) -> bool:
        """
        Apply the timeout transition if the attempt's deadline has passed.

        Returns True if this call timed the attempt out, False if the attempt
        is still within its budget. Raises AlreadyFinalized if the attempt
        has already left in-progress. ``user_id`` enforces ownership when given.
        """
        now = self.clock()

        with self.session_factory() as db:
            with db.begin():
                if user_id is None:
                    attempt = self._load(db, attempt_id)
                else:
                    attempt = self._load_owned(db, attempt_id, user_id)
                self._require_in_progress(attempt)

                if now <= attempt.expires_at:
                    return False

                self._finalize(db, attempt, TIMED_OUT, attempt.expires_at)

        self.cache.delete(attempt_key(attempt_id))
        return True

    def abandon_attempt(self, attempt_id: str, requester_role: str) -> AttemptView:
        """Administrative transition in-progress -> abandoned."""
        if not is_elevated(requester_role):
            raise Forbidden("Only instructors and admins can abandon attempts")

        now = self.clock()
        with self.session_factory() as db:
            with db.begin():
                attempt = self._load(db, attempt_id)
                self._require_in_progress(attempt)
                self._finalize(db, attempt, ABANDONED, min(now, attempt.expires_at))
                view = _attempt_view(attempt)

        self.cache.delete(attempt_key(attempt_id))
        return view

    def sweep_expired(self) -> int:
        """
        Time out every in-progress attempt whose deadline has passed.

        Housekeeping only; the lazy checks in every operation do not depend
        on it. Returns the number of attempts this call timed out.
        """
        now = self.clock()
        with self.session_factory() as db:
            overdue = [row.id for row in db.query(Attempt.id).filter(
                Attempt.status == IN_PROGRESS,
                Attempt.expires_at < now
            ).all()]

        timed_out = 0
        for attempt_id in overdue:
            try:
                if self.check_time_limit(attempt_id):
                    timed_out += 1
            except AlreadyFinalized:
                # finalized by a concurrent call since the scan
                continue

        log_with_context(logger, "INFO", "Sweep timed out {} attempts".format(timed_out),
                         extra_data={"scanned": len(overdue)})
        return timed_out

    # ── Reads ─────────────────────────────────────────────────

    def get_attempt_questions(self, attempt_id: str, user_id: str) -> List[AttemptQuestionView]:
        """
        The attempt's questions in slot order, for the attempt owner.

        The answer key (which options are correct) is only included once
        the attempt has been finalized.
        """
        with self.session_factory() as db:
            attempt = self._load_owned(db, attempt_id, user_id)
            reveal = not attempt.is_in_progress

            views = []
            for slot in sorted(attempt.slots, key=lambda s: s.position):
                question = self.questions.get_question(db, slot.question_id)
                views.append(AttemptQuestionView(
                    question_id=question.id,
                    position=slot.position,
                    type=question.type,
                    text=question.content_text,
                    image=question.content_image,
                    code=question.content_code,
                    options=[
                        QuestionOptionView(
                            id=o.get("id"),
                            text=o.get("text"),
                            is_correct=bool(o.get("isCorrect")) if reveal else None,
                        )
                        for o in question.options_list
                    ],
                    points=slot.max_points,
                    time_estimate=question.time_estimate,
                    answer=slot.answer_value,
                ))
            return views

    def get_attempt_result(self, attempt_id: str, requester_id: str,
                           requester_role: str) -> AttemptResultDetail:
        """
        Result view for the attempt owner, the assessment author or an admin.

        Owners only see the result once the attempt is finalized. An overdue
        in-progress attempt is timed out before the view is built.
        """
        now = self.clock()
        expired = False

        with self.session_factory() as db:
            with db.begin():
                attempt = db.query(Attempt).options(
                    joinedload(Attempt.slots)
                ).filter(Attempt.id == attempt_id).first()
                if attempt is None:
                    raise NotFound("Attempt not found", attempt_id=attempt_id)

                assessment = self.assessments.get_assessment(db, attempt.assessment_id)
                is_owner = attempt.user_id == requester_id
                is_reviewer = requester_role == ADMIN or (
                    assessment.created_by is not None and assessment.created_by == requester_id)

                if not (is_owner or is_reviewer):
                    raise Forbidden("Permission denied", attempt_id=attempt_id)

                if attempt.is_in_progress and now > attempt.expires_at:
                    self._finalize(db, attempt, TIMED_OUT, attempt.expires_at)
                    expired = True

                if attempt.is_in_progress and not is_reviewer:
                    raise InvalidState("Attempt is still in progress", attempt_id=attempt_id)

                summary = _result(attempt, assessment)
                detail = AttemptResultDetail(**summary.model_dump(), attempt=_attempt_view(attempt))

        if expired:
            self.cache.delete(attempt_key(attempt_id))
        return detail

    # ── Internals ─────────────────────────────────────────────

    def _load(self, db: Session, attempt_id: str) -> Attempt:
        attempt = db.get(Attempt, attempt_id)
        if attempt is None:
            raise NotFound("Attempt not found", attempt_id=attempt_id)
        return attempt

    def _load_owned(self, db: Session, attempt_id: str, user_id: str) -> Attempt:
        attempt = self._load(db, attempt_id)
        if attempt.user_id != user_id:
            raise Forbidden("Permission denied", attempt_id=attempt_id)
        return attempt

    def _require_in_progress(self, attempt: Attempt):
        if attempt.status != IN_PROGRESS:
            raise AlreadyFinalized("Attempt is already {}".format(attempt.status),
                                   attempt_id=attempt.id)

    def _claim(self, db: Session, attempt: Attempt):
        """Lock the attempt row for this transaction if it is still in progress."""
        rows = db.query(Attempt).filter(
            Attempt.id == attempt.id,
            Attempt.status == IN_PROGRESS
        ).update({Attempt.version: Attempt.version + 1}, synchronize_session=False)
        if rows != 1:
            raise AlreadyFinalized("Attempt was finalized concurrently", attempt_id=attempt.id)

    def _finalize(self, db: Session, attempt: Attempt, status: str, ended_at):
        """
        Compare-and-set the attempt out of in-progress, then score it.

        The status update comes first so the score is summed only after this
        transaction holds the row, i.e. after any in-flight answer commits.
        """
        rows = db.query(Attempt).filter(
            Attempt.id == attempt.id,
            Attempt.status == IN_PROGRESS
        ).update({
            Attempt.status: status,
            Attempt.ended_at: ended_at,
            Attempt.version: Attempt.version + 1,
        }, synchronize_session=False)
        if rows != 1:
            raise AlreadyFinalized("Attempt was finalized concurrently", attempt_id=attempt.id)

        total_score = db.query(func.coalesce(func.sum(AnswerSlot.points), 0)).filter(
            AnswerSlot.attempt_id == attempt.id
        ).scalar()
        completion_time = (ended_at - attempt.started_at).total_seconds()

        db.query(Attempt).filter(Attempt.id == attempt.id).update({
            Attempt.total_score: total_score,
            Attempt.completion_time: completion_time,
        }, synchronize_session=False)
        db.refresh(attempt)

        log_with_context(logger, "INFO", "Attempt finalized as {}".format(status),
                         context={"attempt_id": attempt.id, "user_id": attempt.user_id},
                         extra_data={"total_score": total_score,
                                     "completion_time": completion_time})
