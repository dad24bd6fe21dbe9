"""
Tests for the attempt lifecycle: start, answer, finish, timeout, results
"""
import json
import random
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from examcore.errors import (
    ExamCoreError, NotFound, Forbidden, InvalidState, NotPublished, OutOfWindow,
    AlreadyFinalized, AttemptLimitExceeded, TimeExpired, UnknownQuestion,
    ValidationError
)
from examcore.models.attempt import Attempt
from examcore.services.attempt_engine import START_RETRIES
from examcore.services.catalog import create_assessment, set_assessment_status
from examcore.services.session_cache import attempt_key

START = datetime(2026, 3, 2, 10, 0, 0)


class TestStartAttempt:

    def test_creates_in_progress_attempt_with_slots(self, attempt_engine, seed):
        """A new attempt snapshots deadline and max score and has one slot per question"""
        quiz = seed(questions=[
            {"type": "single-choice", "points": 5, "correct": ["b"]},
            {"type": "multiple-choice", "points": 10, "correct": ["a", "c"]},
        ], duration=45)

        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")

        assert attempt.status == "in-progress"
        assert attempt.attempt_number == 1
        assert attempt.started_at == START
        assert attempt.expires_at == START + timedelta(minutes=45)
        assert attempt.max_possible_score == 15
        assert [s.question_id for s in attempt.slots] == quiz.question_ids
        assert all(s.points == 0 and s.is_correct is None for s in attempt.slots)

    def test_writes_session_cache_record(self, attempt_engine, seed, cache):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")

        record = json.loads(cache.get(attempt_key(attempt.id)))
        assert record["assessmentId"] == quiz.assessment_id
        assert record["userId"] == "student-1"

    def test_point_override_sets_slot_maximum(self, attempt_engine, seed):
        quiz = seed(questions=[{"type": "single-choice", "points": 5, "correct": ["a"], "override": 2}],
                    passing_score=1)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        assert attempt.slots[0].max_points == 2
        assert attempt.max_possible_score == 2

    def test_draft_assessment_is_not_published(self, attempt_engine, seed):
        quiz = seed(status="draft")
        with pytest.raises(NotPublished):
            attempt_engine.start_attempt(quiz.assessment_id, "student-1")

    def test_archived_assessment_is_not_published(self, attempt_engine, seed):
        quiz = seed(status="archived")
        with pytest.raises(NotPublished):
            attempt_engine.start_attempt(quiz.assessment_id, "student-1")

    def test_unknown_assessment(self, attempt_engine):
        with pytest.raises(NotFound):
            attempt_engine.start_attempt("missing", "student-1")

    def test_before_window_opens(self, attempt_engine, seed):
        quiz = seed(start_time=START + timedelta(hours=1))
        with pytest.raises(OutOfWindow):
            attempt_engine.start_attempt(quiz.assessment_id, "student-1")

    def test_window_end_is_exclusive(self, attempt_engine, seed, clock):
        quiz = seed(start_time=START - timedelta(hours=1), end_time=START + timedelta(hours=1))
        clock.set(START + timedelta(hours=1))
        with pytest.raises(OutOfWindow):
            attempt_engine.start_attempt(quiz.assessment_id, "student-1")

    def test_window_start_is_inclusive(self, attempt_engine, seed):
        quiz = seed(start_time=START, end_time=START + timedelta(hours=1))
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        assert attempt.status == "in-progress"

    def test_attempt_limit(self, attempt_engine, seed):
        """Finished attempts still count towards the limit"""
        quiz = seed(allowed_attempts=2)
        first = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.finish_attempt(first.id, "student-1")
        second = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        assert second.attempt_number == 2

        with pytest.raises(AttemptLimitExceeded):
            attempt_engine.start_attempt(quiz.assessment_id, "student-1")

    def test_limit_is_per_user(self, attempt_engine, seed):
        quiz = seed(allowed_attempts=1)
        attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        other = attempt_engine.start_attempt(quiz.assessment_id, "student-2")
        assert other.attempt_number == 1

    def test_randomized_order_uses_injected_rng(self, session_factory, cache, clock, seed):
        from examcore.services.attempt_engine import AttemptEngine

        quiz = seed(questions=[
            {"type": "single-choice", "points": i + 1, "correct": ["a"]} for i in range(8)
        ], randomize_questions=True)
        engine = AttemptEngine(session_factory, cache, clock=clock, rng=random.Random(42))

        attempt = engine.start_attempt(quiz.assessment_id, "student-1")

        expected = list(quiz.question_ids)
        random.Random(42).shuffle(expected)
        assert [s.question_id for s in attempt.slots] == expected
        assert [s.position for s in attempt.slots] == list(range(8))


def _collision():
    return IntegrityError("INSERT INTO attempts", {}, Exception("UNIQUE constraint failed"))


class TestAttemptNumberCollisions:
    """A start that keeps hitting the attempt-number unique constraint"""

    def test_endless_collisions_end_in_business_error(self, attempt_engine, seed, monkeypatch):
        quiz = seed(allowed_attempts=2)
        calls = []

        def always_collide(assessment_id, user_id):
            calls.append(user_id)
            raise _collision()

        monkeypatch.setattr(attempt_engine, "_create_attempt", always_collide)

        with pytest.raises(ExamCoreError) as excinfo:
            attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        assert isinstance(excinfo.value, InvalidState)
        assert len(calls) == 2 + START_RETRIES

    def test_collision_at_the_limit_is_limit_exceeded(self, attempt_engine, seed, monkeypatch):
        """The recount after a collision sees the winner's attempt"""
        quiz = seed(allowed_attempts=1)
        attempt_engine.start_attempt(quiz.assessment_id, "student-1")

        def collide(assessment_id, user_id):
            raise _collision()

        monkeypatch.setattr(attempt_engine, "_create_attempt", collide)
        with pytest.raises(AttemptLimitExceeded):
            attempt_engine.start_attempt(quiz.assessment_id, "student-1")

    def test_retries_until_a_number_is_free(self, attempt_engine, seed, monkeypatch):
        quiz = seed(allowed_attempts=1)
        original = attempt_engine._create_attempt
        failures = [_collision(), _collision(), _collision()]

        def flaky(assessment_id, user_id):
            if failures:
                raise failures.pop()
            return original(assessment_id, user_id)

        monkeypatch.setattr(attempt_engine, "_create_attempt", flaky)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        assert attempt.attempt_number == 1
        assert not failures


class TestAttemptQuestions:

    def test_questions_in_slot_order_without_answer_key(self, attempt_engine, seed):
        quiz = seed(questions=[
            {"type": "single-choice", "points": 5, "correct": ["b"], "text": "First"},
            {"type": "true-false", "points": 2, "correct": ["true"], "text": "Second"},
        ])
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "c")

        questions = attempt_engine.get_attempt_questions(attempt.id, "student-1")

        assert [q.question_id for q in questions] == [s.question_id for s in attempt.slots]
        assert [q.text for q in questions] == ["First", "Second"]
        assert [o.id for o in questions[0].options] == ["a", "b", "c", "d"]
        assert all(o.is_correct is None for q in questions for o in q.options)
        assert questions[0].answer == "c"
        assert questions[1].points == 2

    def test_answer_key_revealed_after_finish(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.finish_attempt(attempt.id, "student-1")

        questions = attempt_engine.get_attempt_questions(attempt.id, "student-1")
        assert {o.id: o.is_correct for o in questions[0].options} == {
            "a": False, "b": True, "c": False, "d": False}

    def test_only_the_owner_reads_questions(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(Forbidden):
            attempt_engine.get_attempt_questions(attempt.id, "student-2")


class TestAssessmentAuthoring:
    """Assessment-level validation when an assessment is created"""

    def test_passing_score_above_total_points(self, seed):
        with pytest.raises(ValidationError):
            seed(passing_score=50)

    def test_passing_score_equal_to_total_points(self, seed):
        quiz = seed(passing_score=5)
        assert quiz.total_points == 5

    def test_negative_passing_score(self, seed):
        with pytest.raises(ValidationError):
            seed(passing_score=-1)

    def test_published_assessment_needs_questions(self, session_factory):
        with session_factory() as db:
            with pytest.raises(ValidationError):
                create_assessment(db, title="Empty", duration=30, questions=[],
                                  status="published", created_by="instructor-1")

    def test_empty_draft_cannot_be_published(self, session_factory):
        with session_factory() as db:
            draft = create_assessment(db, title="Empty", duration=30, questions=[],
                                      status="draft", created_by="instructor-1")
            db.commit()
            with pytest.raises(ValidationError):
                set_assessment_status(db, draft.id, "published")


class TestSubmitAnswer:

    def test_single_choice_scenario(self, attempt_engine, seed):
        """One 5-point single-choice question answered correctly scores 5/5 and passes"""
        quiz = seed(questions=[{"type": "single-choice", "points": 5, "correct": ["b"]}],
                    passing_score=3)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")

        attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "b")
        result = attempt_engine.finish_attempt(attempt.id, "student-1")

        assert result.status == "completed"
        assert result.total_score == 5
        assert result.max_possible_score == 5
        assert result.percentage == 100.0
        assert result.passed is True

    def test_resubmission_overwrites(self, attempt_engine, seed):
        quiz = seed(questions=[{"type": "single-choice", "points": 5, "correct": ["b"]}])
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        qid = quiz.question_ids[0]

        attempt_engine.submit_answer(attempt.id, "student-1", qid, "b")
        attempt_engine.submit_answer(attempt.id, "student-1", qid, "c")
        result = attempt_engine.finish_attempt(attempt.id, "student-1")

        assert result.total_score == 0
        assert result.passed is False

    def test_same_answer_twice_is_idempotent(self, attempt_engine, seed, session_factory):
        quiz = seed(questions=[{"type": "multiple-choice", "points": 4, "correct": ["a", "d"]}])
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        qid = quiz.question_ids[0]

        attempt_engine.submit_answer(attempt.id, "student-1", qid, ["d", "a"])
        attempt_engine.submit_answer(attempt.id, "student-1", qid, ["d", "a"])

        with session_factory() as db:
            slot = db.get(Attempt, attempt.id).slots[0]
            assert slot.is_correct is True
            assert slot.points == 4
            assert slot.answer_value == ["d", "a"]

    def test_time_spent_never_decreases(self, attempt_engine, seed, clock, session_factory):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        qid = quiz.question_ids[0]

        clock.advance(seconds=30)
        attempt_engine.submit_answer(attempt.id, "student-1", qid, "a")
        clock.set(START + timedelta(seconds=20))
        attempt_engine.submit_answer(attempt.id, "student-1", qid, "b")

        with session_factory() as db:
            assert db.get(Attempt, attempt.id).slots[0].time_spent == 30

    def test_essay_answer_is_stored_ungraded(self, attempt_engine, seed, session_factory):
        quiz = seed(questions=[{"type": "essay", "points": 8}])
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")

        attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "My essay")

        with session_factory() as db:
            slot = db.get(Attempt, attempt.id).slots[0]
            assert slot.is_correct is None
            assert slot.points == 0
            assert slot.answer_value == "My essay"

    def test_other_user_is_forbidden(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(Forbidden):
            attempt_engine.submit_answer(attempt.id, "student-2", quiz.question_ids[0], "b")

    def test_question_outside_attempt(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(UnknownQuestion):
            attempt_engine.submit_answer(attempt.id, "student-1", "not-in-attempt", "b")

    def test_missing_answer_value(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(ValidationError):
            attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], None)

    def test_unknown_attempt(self, attempt_engine):
        with pytest.raises(NotFound):
            attempt_engine.submit_answer("missing", "student-1", "q", "a")

    def test_after_deadline_times_out(self, attempt_engine, seed, clock, session_factory, cache):
        """Late answer is rejected, the attempt is timed out and cannot be finished"""
        quiz = seed(duration=10)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "b")

        clock.advance(minutes=10, seconds=1)
        with pytest.raises(TimeExpired):
            attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "c")

        with session_factory() as db:
            stored = db.get(Attempt, attempt.id)
            assert stored.status == "timed-out"
            assert stored.ended_at == attempt.expires_at
            assert stored.total_score == 5
            assert stored.completion_time == 600.0
            assert stored.slots[0].answer_value == "b"
        assert cache.get(attempt_key(attempt.id)) is None

        with pytest.raises(AlreadyFinalized):
            attempt_engine.finish_attempt(attempt.id, "student-1")

    def test_exactly_at_deadline_is_accepted(self, attempt_engine, seed, clock):
        quiz = seed(duration=10)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        clock.set(attempt.expires_at)
        attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "b")

    def test_after_finish_is_rejected(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.finish_attempt(attempt.id, "student-1")
        with pytest.raises(AlreadyFinalized):
            attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "b")


class TestFinishAttempt:

    def test_mixed_scoring(self, attempt_engine, seed, clock):
        quiz = seed(questions=[
            {"type": "single-choice", "points": 5, "correct": ["b"]},
            {"type": "multiple-choice", "points": 10, "correct": ["a", "c"]},
            {"type": "true-false", "points": 2, "correct": ["true"]},
            {"type": "essay", "points": 8},
        ], passing_score=15)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        q1, q2, q3, q4 = quiz.question_ids

        attempt_engine.submit_answer(attempt.id, "student-1", q1, "b")
        attempt_engine.submit_answer(attempt.id, "student-1", q2, ["a", "b", "c"])
        attempt_engine.submit_answer(attempt.id, "student-1", q3, True)
        attempt_engine.submit_answer(attempt.id, "student-1", q4, "Essay text")
        clock.advance(minutes=12)

        result = attempt_engine.finish_attempt(attempt.id, "student-1")

        assert result.total_score == 7
        assert result.max_possible_score == 25
        assert result.percentage == 28.0
        assert result.passed is False
        assert result.completion_time == 720.0

    def test_unanswered_attempt_scores_zero(self, attempt_engine, seed):
        quiz = seed(passing_score=0)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        result = attempt_engine.finish_attempt(attempt.id, "student-1")
        assert result.total_score == 0
        assert result.passed is True

    def test_second_finish_is_rejected(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.finish_attempt(attempt.id, "student-1")
        with pytest.raises(AlreadyFinalized):
            attempt_engine.finish_attempt(attempt.id, "student-1")

    def test_finish_after_deadline_times_out(self, attempt_engine, seed, clock, session_factory):
        quiz = seed(duration=5)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        clock.advance(minutes=6)

        with pytest.raises(TimeExpired):
            attempt_engine.finish_attempt(attempt.id, "student-1")

        with session_factory() as db:
            assert db.get(Attempt, attempt.id).status == "timed-out"

    def test_other_user_is_forbidden(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(Forbidden):
            attempt_engine.finish_attempt(attempt.id, "student-2")

    def test_max_score_is_a_snapshot(self, attempt_engine, seed, session_factory):
        """Later catalog edits do not change a started attempt's maximum"""
        from examcore.models.assessment import Assessment

        quiz = seed(questions=[{"type": "single-choice", "points": 5, "correct": ["b"]}])
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")

        with session_factory() as db:
            db.get(Assessment, quiz.assessment_id).total_points = 50
            db.commit()

        result = attempt_engine.finish_attempt(attempt.id, "student-1")
        assert result.max_possible_score == 5


class TestTimeLimit:

    def test_within_budget(self, attempt_engine, seed, clock):
        quiz = seed(duration=30)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        clock.advance(minutes=29)
        assert attempt_engine.check_time_limit(attempt.id) is False

    def test_past_budget_times_out(self, attempt_engine, seed, clock, session_factory):
        quiz = seed(duration=30)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        clock.advance(minutes=45)

        assert attempt_engine.check_time_limit(attempt.id, "student-1") is True
        with session_factory() as db:
            stored = db.get(Attempt, attempt.id)
            assert stored.status == "timed-out"
            assert stored.ended_at == attempt.expires_at

        with pytest.raises(AlreadyFinalized):
            attempt_engine.check_time_limit(attempt.id)

    def test_owner_check(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(Forbidden):
            attempt_engine.check_time_limit(attempt.id, "student-2")

    def test_sweep_times_out_only_overdue(self, attempt_engine, seed, clock):
        short = seed(duration=5, title="Short")
        long = seed(duration=120, title="Long")
        a = attempt_engine.start_attempt(short.assessment_id, "student-1")
        b = attempt_engine.start_attempt(long.assessment_id, "student-1")
        clock.advance(minutes=10)

        assert attempt_engine.sweep_expired() == 1
        assert attempt_engine.sweep_expired() == 0
        with pytest.raises(AlreadyFinalized):
            attempt_engine.finish_attempt(a.id, "student-1")
        assert attempt_engine.finish_attempt(b.id, "student-1").status == "completed"


class TestAbandonAttempt:

    def test_admin_abandons(self, attempt_engine, seed, clock):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        clock.advance(minutes=3)

        view = attempt_engine.abandon_attempt(attempt.id, "admin")

        assert view.status == "abandoned"
        assert view.ended_at == START + timedelta(minutes=3)
        assert view.completion_time == 180.0

    def test_student_cannot_abandon(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(Forbidden):
            attempt_engine.abandon_attempt(attempt.id, "student")

    def test_finalized_attempt_cannot_be_abandoned(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.finish_attempt(attempt.id, "student-1")
        with pytest.raises(AlreadyFinalized):
            attempt_engine.abandon_attempt(attempt.id, "instructor")


class TestAttemptResult:

    def test_owner_sees_finished_result(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.submit_answer(attempt.id, "student-1", quiz.question_ids[0], "b")
        attempt_engine.finish_attempt(attempt.id, "student-1")

        detail = attempt_engine.get_attempt_result(attempt.id, "student-1", "student")

        assert detail.total_score == 5
        assert detail.passed is True
        assert detail.attempt.slots[0].answer == "b"
        assert detail.attempt.slots[0].is_correct is True

    def test_owner_cannot_see_in_progress(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(InvalidState):
            attempt_engine.get_attempt_result(attempt.id, "student-1", "student")

    def test_author_sees_in_progress(self, attempt_engine, seed):
        quiz = seed(created_by="instructor-1")
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        detail = attempt_engine.get_attempt_result(attempt.id, "instructor-1", "instructor")
        assert detail.status == "in-progress"

    def test_other_instructor_is_forbidden(self, attempt_engine, seed):
        quiz = seed(created_by="instructor-1")
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        with pytest.raises(Forbidden):
            attempt_engine.get_attempt_result(attempt.id, "instructor-2", "instructor")

    def test_admin_sees_any_attempt(self, attempt_engine, seed):
        quiz = seed()
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        attempt_engine.finish_attempt(attempt.id, "student-1")
        assert attempt_engine.get_attempt_result(attempt.id, "root", "admin").status == "completed"

    def test_overdue_attempt_is_timed_out_on_read(self, attempt_engine, seed, clock):
        quiz = seed(duration=5)
        attempt = attempt_engine.start_attempt(quiz.assessment_id, "student-1")
        clock.advance(minutes=7)

        detail = attempt_engine.get_attempt_result(attempt.id, "student-1", "student")
        assert detail.status == "timed-out"
        assert detail.completion_time == 300.0
