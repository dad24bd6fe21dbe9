"""
ProctorSession model - the monitoring context of one attempt.

A session accumulates proctor events and an anomaly score while it is
active. At most one active session may exist per (attempt, user); this is
enforced by a partial unique index so concurrent starts cannot both win.
"""

import uuid
import json
from sqlalchemy import Column, Text, Integer, DateTime, String, Index, text
from sqlalchemy.orm import relationship
from examcore.database import Base

ACTIVE = "active"
COMPLETED = "completed"
TERMINATED = "terminated"

SESSION_STATUSES = (ACTIVE, COMPLETED, TERMINATED)

# Anomaly weights in tenths of a point; low=0.2, medium=0.5, high=1.0
SEVERITY_WEIGHTS = {"low": 2, "medium": 5, "high": 10}
ANOMALY_SCALE = 10


class ProctorSession(Base):
    """
    SQLAlchemy model for the proctor_sessions table.

    The anomaly score is kept as an integer number of tenths
    (anomaly_points) so concurrent in-place increments stay exact.
    """
    __tablename__ = "proctor_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique session identifier")
    attempt_id = Column(String(36), nullable=False,
                        doc="Attempt being proctored (correlation only, no FK)")
    user_id = Column(String(64), nullable=False,
                     doc="Test-taker being proctored")
    assessment_id = Column(String(36), nullable=False)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(String(16), nullable=False, default=ACTIVE,
                    doc="active | completed | terminated")
    settings = Column(Text, nullable=False, default="{}",
                      doc="Settings snapshot as JSON")
    anomaly_points = Column(Integer, nullable=False, default=0,
                            doc="Anomaly score in tenths")
    event_count = Column(Integer, nullable=False, default=0,
                         doc="Number of events recorded; last assigned sequence")

    events = relationship("ProctorEvent", back_populates="session",
                          order_by="ProctorEvent.sequence")

    __table_args__ = (
        Index("uq_proctor_sessions_active", "attempt_id", "user_id", unique=True,
              sqlite_where=text("status = 'active'"),
              postgresql_where=text("status = 'active'")),
        Index("ix_proctor_sessions_attempt_id", "attempt_id"),
    )

    @property
    def settings_dict(self):
        try:
            return json.loads(self.settings) if self.settings else {}
        except (json.JSONDecodeError, TypeError):
            return {}

    @property
    def anomaly_score(self):
        return self.anomaly_points / ANOMALY_SCALE

    def __repr__(self):
        return f"<ProctorSession(id={self.id}, attempt={self.attempt_id}, status='{self.status}')>"
