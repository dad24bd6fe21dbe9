"""
Attempt model - one user's timed run through an assessment.

This is the central entity of the attempt engine. Each attempt contains:
- One AnswerSlot per assigned question, fixed at creation
- A durable deadline (expires_at) used for timeout detection
- A snapshot of the assessment's total points (max_possible_score)
- A version counter bumped by every mutation, used as the serialization
  point for concurrent answer submissions and finalization
"""

import uuid
from sqlalchemy import (
    Column, Integer, Float, DateTime, ForeignKey, Index, String,
    UniqueConstraint
)
from sqlalchemy.orm import relationship
from examcore.database import Base

IN_PROGRESS = "in-progress"
COMPLETED = "completed"
ABANDONED = "abandoned"
TIMED_OUT = "timed-out"

ATTEMPT_STATUSES = (IN_PROGRESS, COMPLETED, ABANDONED, TIMED_OUT)
TERMINAL_STATUSES = (COMPLETED, ABANDONED, TIMED_OUT)


class Attempt(Base):
    """
    SQLAlchemy model for the attempts table.

    Lifecycle (all transitions out of in-progress are terminal):
    - in-progress -> completed: explicit finish before the deadline
    - in-progress -> timed-out: deadline passed, detected lazily
    - in-progress -> abandoned: administrative action
    """
    __tablename__ = "attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique attempt identifier")
    assessment_id = Column(String(36), ForeignKey("assessments.id"), nullable=False,
                           doc="Reference to the assessment being attempted")
    user_id = Column(String(64), nullable=False,
                     doc="Identity of the test-taker")
    attempt_number = Column(Integer, nullable=False,
                            doc="1-based ordinal of this attempt for (assessment, user)")
    started_at = Column(DateTime, nullable=False,
                        doc="When the attempt was created")
    expires_at = Column(DateTime, nullable=False,
                        doc="started_at + assessment duration, fixed at creation")
    ended_at = Column(DateTime, nullable=True,
                      doc="Set once, when the attempt leaves in-progress")
    completion_time = Column(Float, nullable=True,
                             doc="Seconds between started_at and ended_at")
    status = Column(String(16), nullable=False, default=IN_PROGRESS,
                    doc="in-progress | completed | abandoned | timed-out")
    total_score = Column(Integer, nullable=False, default=0,
                         doc="Sum of slot points, computed at finalization")
    max_possible_score = Column(Integer, nullable=False, default=0,
                                doc="Assessment total points at creation time")
    version = Column(Integer, nullable=False, default=1,
                     doc="Incremented by every mutation of this attempt")

    slots = relationship("AnswerSlot", back_populates="attempt",
                         order_by="AnswerSlot.position",
                         cascade="all, delete-orphan")
    assessment = relationship("Assessment")

    __table_args__ = (
        UniqueConstraint("assessment_id", "user_id", "attempt_number",
                         name="uq_attempts_assessment_user_number"),
        Index("ix_attempts_user_id", "user_id"),
        Index("ix_attempts_status", "status"),
    )

    @property
    def is_in_progress(self):
        return self.status == IN_PROGRESS

    def __repr__(self):
        return f"<Attempt(id={self.id}, user={self.user_id}, assessment={self.assessment_id}, status='{self.status}')>"
