"""
Grading Service - inline auto-grading of a single submitted answer.

Rules:
1. multiple-choice: correct iff the submitted option IDs, taken as a set,
   equal the set of options flagged isCorrect (order and duplicates ignored)
2. single-choice / true-false: correct iff the submitted value equals the ID
   of the option flagged isCorrect
3. A correct answer earns the slot's full points, anything else earns 0
4. essay, coding and fill-in-the-blank are not auto-graded: is_correct stays
   None and points stay 0 until a manual grader sets them

Grading is a pure function of (question, answer, points), so resubmitting
the same answer always produces the same outcome.
"""

from collections import namedtuple
from examcore.models.question import (
    Question, MULTIPLE_CHOICE, SINGLE_CHOICE, TRUE_FALSE, AUTO_GRADABLE_TYPES
)
from examcore.logging_config import get_logger, log_with_context

logger = get_logger("grading")

GradeOutcome = namedtuple("GradeOutcome", ["is_correct", "points"])

UNGRADED = GradeOutcome(is_correct=None, points=0)


def _normalize_scalar(value):
    """True/False booleans are compared against option IDs "true"/"false"."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def is_multiple_choice_correct(answer, correct_ids) -> bool:
    if not isinstance(answer, (list, tuple)):
        return False
    try:
        submitted = {_normalize_scalar(a) for a in answer}
    except TypeError:
        # unhashable elements (nested lists/dicts) can never match an option ID
        return False
    return submitted == set(correct_ids)


def is_single_choice_correct(answer, correct_ids) -> bool:
    if not correct_ids or isinstance(answer, (list, tuple, dict)):
        return False
    return _normalize_scalar(answer) == correct_ids[0]


def grade_answer(question: Question, answer, max_points: int) -> GradeOutcome:
    """
    Grade one answer against the question's option key.

    Args:
        question: Catalog question (read, never modified)
        answer: The submitted value (list of option IDs, option ID, text)
        max_points: Points a correct answer earns in this attempt

    Returns:
        GradeOutcome(is_correct, points)
    """
    if question.type not in AUTO_GRADABLE_TYPES:
        return UNGRADED

    correct_ids = question.correct_option_ids

    if question.type == MULTIPLE_CHOICE:
        is_correct = is_multiple_choice_correct(answer, correct_ids)
    elif question.type in (SINGLE_CHOICE, TRUE_FALSE):
        is_correct = is_single_choice_correct(answer, correct_ids)
    else:
        is_correct = False

    outcome = GradeOutcome(is_correct=is_correct, points=max_points if is_correct else 0)

    log_with_context(logger, "DEBUG",
        "Graded {} answer: correct={}".format(question.type, is_correct),
        context={"question_id": str(question.id)},
        extra_data={"points": outcome.points, "max_points": max_points})

    return outcome
