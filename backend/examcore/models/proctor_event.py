"""
ProctorEvent model - one suspicious-activity signal within a proctor session.

Events are append-only: the engine inserts them and never updates or
deletes them. Attempt, user and assessment IDs are denormalized from the
session so the timeline can be queried by attempt alone.
"""

import uuid
import json
from sqlalchemy import Column, Text, Integer, DateTime, ForeignKey, String, Index
from sqlalchemy.orm import relationship
from examcore.database import Base

EVENT_TYPES = (
    "tab-switch",
    "full-screen-exit",
    "face-not-detected",
    "multiple-faces",
    "audio-detected",
    "suspicious-activity",
)

SEVERITIES = ("low", "medium", "high")


class ProctorEvent(Base):
    """SQLAlchemy model for the proctor_events table."""
    __tablename__ = "proctor_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique event identifier")
    session_id = Column(String(36), ForeignKey("proctor_sessions.id"), nullable=False)
    attempt_id = Column(String(36), nullable=False)
    user_id = Column(String(64), nullable=False)
    assessment_id = Column(String(36), nullable=False)
    sequence = Column(Integer, nullable=False,
                      doc="1-based position in the session timeline")
    type = Column(String(32), nullable=False,
                  doc="One of EVENT_TYPES")
    severity = Column(String(8), nullable=False, default="medium",
                      doc="low | medium | high")
    timestamp = Column(DateTime, nullable=False)
    details = Column(Text, nullable=True,
                     doc="Free-form details as JSON")
    snapshot = Column(Text, nullable=True,
                      doc="Capture references as JSON: {image, screenCapture}")

    session = relationship("ProctorSession", back_populates="events")

    __table_args__ = (
        Index("ix_proctor_events_session_sequence", "session_id", "sequence", unique=True),
        Index("ix_proctor_events_attempt_id", "attempt_id"),
    )

    @property
    def details_value(self):
        try:
            return json.loads(self.details) if self.details else None
        except (json.JSONDecodeError, TypeError):
            return None

    @property
    def snapshot_value(self):
        try:
            return json.loads(self.snapshot) if self.snapshot else None
        except (json.JSONDecodeError, TypeError):
            return None

    def __repr__(self):
        return f"<ProctorEvent(id={self.id}, session={self.session_id}, type='{self.type}', severity='{self.severity}')>"
