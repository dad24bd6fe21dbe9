from examcore.models.question import Question
from examcore.models.assessment import Assessment, AssessmentQuestion
from examcore.models.attempt import Attempt
from examcore.models.answer_slot import AnswerSlot
from examcore.models.proctor_session import ProctorSession
from examcore.models.proctor_event import ProctorEvent

__all__ = [
    "Question", "Assessment", "AssessmentQuestion", "Attempt", "AnswerSlot",
    "ProctorSession", "ProctorEvent",
]
