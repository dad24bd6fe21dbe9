"""
Assessment model - a timed test assembled from catalog questions.

Holds duration, passing threshold, attempt limit, scheduling window and
proctoring requirements. The ordered question list lives in the
assessment_questions table with optional per-assessment point overrides.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, Text, Integer, DateTime, String, Boolean, ForeignKey,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from examcore.database import Base
from examcore.timeutils import utcnow

DRAFT = "draft"
PUBLISHED = "published"
ARCHIVED = "archived"

ASSESSMENT_STATUSES = (DRAFT, PUBLISHED, ARCHIVED)


class Assessment(Base):
    """
    SQLAlchemy model for the assessments table.

    passing_score is a points threshold compared against an attempt's
    total_score, not a percentage.
    """
    __tablename__ = "assessments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique assessment identifier")
    title = Column(Text, nullable=False,
                   doc="Assessment title")
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False,
                              doc="Time budget of one attempt in minutes")
    total_points = Column(Integer, nullable=False, default=0,
                          doc="Sum of effective question points")
    passing_score = Column(Integer, nullable=False, default=0,
                           doc="Points needed to pass")
    randomize_questions = Column(Boolean, nullable=False, default=False)
    allowed_attempts = Column(Integer, nullable=False, default=1)
    proctoring_enabled = Column(Boolean, nullable=False, default=False)
    webcam_required = Column(Boolean, nullable=False, default=False)
    screensharing_required = Column(Boolean, nullable=False, default=False)
    lockdown_browser_required = Column(Boolean, nullable=False, default=False)
    start_time = Column(DateTime, nullable=True,
                        doc="Availability window start (inclusive)")
    end_time = Column(DateTime, nullable=True,
                      doc="Availability window end (exclusive)")
    status = Column(String(16), nullable=False, default=DRAFT,
                    doc="draft | published | archived")
    created_by = Column(String(64), nullable=True,
                        doc="User ID of the instructor who authored it")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    questions = relationship("AssessmentQuestion", back_populates="assessment",
                             order_by="AssessmentQuestion.position",
                             cascade="all, delete-orphan")

    @property
    def proctoring(self):
        return {
            "enabled": self.proctoring_enabled,
            "webcamRequired": self.webcam_required,
            "screensharingRequired": self.screensharing_required,
            "lockdownBrowserRequired": self.lockdown_browser_required,
        }

    def is_open_at(self, now: datetime) -> bool:
        """Half-open window check: start <= now < end, each bound optional."""
        if self.start_time is not None and now < self.start_time:
            return False
        if self.end_time is not None and now >= self.end_time:
            return False
        return True

    def __repr__(self):
        return f"<Assessment(id={self.id}, title='{self.title}', status='{self.status}')>"


class AssessmentQuestion(Base):
    """One entry of an assessment's ordered question list."""
    __tablename__ = "assessment_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assessment_id = Column(String(36), ForeignKey("assessments.id"), nullable=False)
    question_id = Column(String(36), ForeignKey("questions.id"), nullable=False)
    position = Column(Integer, nullable=False,
                      doc="0-based position in the authored order")
    points = Column(Integer, nullable=True,
                    doc="Point override; NULL means use the question's default")

    assessment = relationship("Assessment", back_populates="questions")
    question = relationship("Question")

    __table_args__ = (
        UniqueConstraint("assessment_id", "question_id", name="uq_assessment_questions_question"),
        Index("ix_assessment_questions_assessment_id", "assessment_id"),
    )

    @property
    def effective_points(self):
        if self.points is not None:
            return self.points
        return self.question.points if self.question else 0
