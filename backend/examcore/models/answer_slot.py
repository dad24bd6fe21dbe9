"""
AnswerSlot model - the answer and grading outcome for one question of an attempt.

Slots are created together with their attempt, one per assigned question,
and are never added or removed afterwards. Each slot holds:
- The latest submitted answer as JSON (last write wins)
- The auto-grading outcome (is_correct, points)
- time_spent, which never decreases across resubmissions
"""

import json
from sqlalchemy import Column, Integer, Boolean, ForeignKey, Text, String, UniqueConstraint
from sqlalchemy.orm import relationship
from examcore.database import Base


class AnswerSlot(Base):
    """
    SQLAlchemy model for the answer_slots table.

    is_correct stays NULL for question types that need manual grading
    (essay, coding, fill-in-the-blank) and for slots never answered.
    """
    __tablename__ = "answer_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(String(36), ForeignKey("attempts.id"), nullable=False,
                        doc="Owning attempt")
    question_id = Column(String(36), ForeignKey("questions.id"), nullable=False,
                         doc="Question assigned to this slot")
    position = Column(Integer, nullable=False,
                      doc="Display position within the attempt (after shuffling)")
    max_points = Column(Integer, nullable=False, default=0,
                        doc="Points a correct answer earns (assessment override or question default)")
    answer = Column(Text, nullable=True,
                    doc="Latest submitted answer as JSON")
    is_correct = Column(Boolean, nullable=True,
                        doc="Auto-grading outcome; NULL when not auto-graded")
    points = Column(Integer, nullable=False, default=0,
                    doc="Points awarded")
    time_spent = Column(Integer, nullable=False, default=0,
                        doc="Seconds since attempt start at the latest submission")

    attempt = relationship("Attempt", back_populates="slots")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_slots_attempt_question"),
    )

    @property
    def answer_value(self):
        """Parse the stored answer JSON."""
        if self.answer is None:
            return None
        try:
            return json.loads(self.answer)
        except (json.JSONDecodeError, TypeError):
            return None

    def __repr__(self):
        return f"<AnswerSlot(attempt={self.attempt_id}, question={self.question_id}, points={self.points})>"
