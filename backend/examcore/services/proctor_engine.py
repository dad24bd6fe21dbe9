"""
Proctor Session Engine - proctoring session lifecycle and event ingestion.

Sessions:
    active --end_session (owner)----------------> completed
    active --terminate_session (instructor/admin)-> terminated

Each recorded event is appended to the session timeline and adds a
severity weight to the session's anomaly score (low=0.2, medium=0.5,
high=1.0). The score is a plain additive accumulator with no decay or cap;
consumers apply their own thresholds.

Concurrency:
- One active session per (attempt, user) is guaranteed by a partial unique
  index, so a start that loses the race surfaces as SessionAlreadyActive.
- Event recording increments the score and the event counter with a single
  in-place UPDATE guarded on status = 'active'. The counter value becomes
  the event's sequence number, giving a gap-free timeline order.
"""

import json
import os
import time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from examcore.errors import NotFound, Forbidden, NotActive, SessionAlreadyActive, ValidationError
from examcore.models.proctor_session import (
    ProctorSession, ACTIVE, COMPLETED, TERMINATED, SEVERITY_WEIGHTS, ANOMALY_SCALE
)
from examcore.models.proctor_event import ProctorEvent, EVENT_TYPES, SEVERITIES
from examcore.roles import is_elevated
from examcore.schemas import (
    ProctorSettings, ProctorSessionView, ProctorEventView, SessionEventsView,
    LockdownConfig, Snapshot
)
from examcore.logging_config import get_logger, log_with_context
from examcore.timeutils import utcnow

logger = get_logger("proctor")

# Static lockdown policy handed to the client browser
LOCKDOWN_ALLOWED_DOMAINS = [
    d.strip() for d in os.getenv(
        "LOCKDOWN_ALLOWED_DOMAINS", "assessment.domain.com,proctor.domain.com"
    ).split(",") if d.strip()
]
LOCKDOWN_BLOCKED_KEYS = ["PrintScreen", "ContextMenu"]


def _session_view(session: ProctorSession) -> ProctorSessionView:
    return ProctorSessionView(
        id=session.id,
        attempt_id=session.attempt_id,
        user_id=session.user_id,
        assessment_id=session.assessment_id,
        status=session.status,
        started_at=session.started_at,
        ended_at=session.ended_at,
        settings=ProctorSettings(**session.settings_dict),
        anomaly_score=session.anomaly_score,
        event_count=session.event_count,
    )


def _event_view(event: ProctorEvent) -> ProctorEventView:
    snapshot = event.snapshot_value
    return ProctorEventView(
        id=event.id,
        sequence=event.sequence,
        type=event.type,
        severity=event.severity,
        timestamp=event.timestamp,
        details=event.details_value,
        snapshot=Snapshot(**snapshot) if snapshot else None,
    )


class ProctorEngine:
    """
    Owns ProctorSession and ProctorEvent state.

    Args:
        session_factory: callable returning a new SQLAlchemy Session
        clock: returns the current naive UTC datetime
    """

    def __init__(self, session_factory, clock=utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def start_session(self, attempt_id: str, assessment_id: str, user_id: str,
                      settings: ProctorSettings = None) -> ProctorSessionView:
        """Open a proctor session. Raises SessionAlreadyActive."""
        settings = settings or ProctorSettings()
        now = self.clock()

        try:
            with self.session_factory() as db:
                with db.begin():
                    existing = db.query(ProctorSession.id).filter(
                        ProctorSession.attempt_id == attempt_id,
                        ProctorSession.user_id == user_id,
                        ProctorSession.status == ACTIVE
                    ).first()
                    if existing is not None:
                        raise SessionAlreadyActive("Active session already exists",
                                                   attempt_id=attempt_id, session_id=existing.id)

                    session = ProctorSession(
                        attempt_id=attempt_id,
                        user_id=user_id,
                        assessment_id=assessment_id,
                        started_at=now,
                        status=ACTIVE,
                        settings=settings.model_dump_json(),
                        anomaly_points=0,
                        event_count=0,
                    )
                    db.add(session)
                    db.flush()
                    view = _session_view(session)
        except IntegrityError:
            # lost the race against a concurrent start for the same attempt
            raise SessionAlreadyActive("Active session already exists", attempt_id=attempt_id)

        log_with_context(logger, "INFO", "Proctor session started",
                         context={"session_id": view.id, "attempt_id": attempt_id,
                                  "user_id": user_id, "assessment_id": assessment_id})
        return view

    def end_session(self, session_id: str, user_id: str) -> ProctorSessionView:
        """Close the caller's active session. Raises NotFound, Forbidden, NotActive."""
        return self._close(session_id, COMPLETED, user_id=user_id)

    def terminate_session(self, session_id: str, requester_role: str) -> ProctorSessionView:
        """Instructor/admin shutdown of an active session."""
        if not is_elevated(requester_role):
            raise Forbidden("Only instructors and admins can terminate sessions")
        return self._close(session_id, TERMINATED)

    def record_event(self, session_id: str, user_id: str, event_type: str, severity: str = "medium",
                     details=None, snapshot: Snapshot = None) -> str:
        """
        Append an event to an active session and add its severity weight.

        Returns the new event's ID. Raises NotFound, Forbidden, NotActive,
        ValidationError.
        """
        if event_type not in EVENT_TYPES:
            raise ValidationError("Unknown proctor event type: {}".format(event_type))
        severity = severity or "medium"
        if severity not in SEVERITIES:
            raise ValidationError("Unknown severity: {}".format(severity))
        try:
            stored_details = json.dumps(details) if details is not None else None
        except (TypeError, ValueError):
            raise ValidationError("Event details must be JSON serializable")

        start_time = time.time()
        now = self.clock()
        weight = SEVERITY_WEIGHTS[severity]

        with self.session_factory() as db:
            with db.begin():
                session = self._load_owned(db, session_id, user_id)
                if session.status != ACTIVE:
                    raise NotActive("Session is not active", session_id=session_id)

                rows = db.query(ProctorSession).filter(
                    ProctorSession.id == session_id,
                    ProctorSession.status == ACTIVE
                ).update({
                    ProctorSession.anomaly_points: ProctorSession.anomaly_points + weight,
                    ProctorSession.event_count: ProctorSession.event_count + 1,
                }, synchronize_session=False)
                if rows != 1:
                    raise NotActive("Session was closed concurrently", session_id=session_id)

                sequence = db.query(ProctorSession.event_count).filter(
                    ProctorSession.id == session_id
                ).scalar()

                event = ProctorEvent(
                    session_id=session.id,
                    attempt_id=session.attempt_id,
                    user_id=session.user_id,
                    assessment_id=session.assessment_id,
                    sequence=sequence,
                    type=event_type,
                    severity=severity,
                    timestamp=now,
                    details=stored_details,
                    snapshot=snapshot.model_dump_json() if snapshot else None,
                )
                db.add(event)
                db.flush()
                event_id = event.id
                attempt_id = session.attempt_id

        log_with_context(logger, "INFO", "Proctor event recorded: {} ({})".format(event_type, severity),
                         context={"session_id": session_id, "attempt_id": attempt_id,
                                  "event_id": event_id, "user_id": user_id},
                         extra_data={"sequence": sequence, "weight": weight / ANOMALY_SCALE,
                                     "duration_ms": round((time.time() - start_time) * 1000, 2)})
        return event_id

    def get_session_events(self, session_id: str, requester_id: str,
                           requester_role: str) -> SessionEventsView:
        """Session metadata and ordered timeline for the test-taker or a reviewer."""
        with self.session_factory() as db:
            session = self._load(db, session_id)
            if session.user_id != requester_id and not is_elevated(requester_role):
                raise Forbidden("Permission denied", session_id=session_id)

            events = db.query(ProctorEvent).filter(
                ProctorEvent.session_id == session_id
            ).order_by(ProctorEvent.sequence).all()

            return SessionEventsView(
                session=_session_view(session),
                events=[_event_view(e) for e in events],
            )

    def get_lockdown_config(self, session_id: str, user_id: str) -> LockdownConfig:
        """Browser lockdown flags of the session plus the static policy."""
        with self.session_factory() as db:
            session = self._load_owned(db, session_id, user_id)
            settings = ProctorSettings(**session.settings_dict)

        return LockdownConfig(
            full_screen_required=settings.full_screen_required,
            browser_lockdown=settings.browser_lockdown,
            allowed_domains=list(LOCKDOWN_ALLOWED_DOMAINS),
            blocked_keys=list(LOCKDOWN_BLOCKED_KEYS),
            prevent_copy_paste=True,
            prevent_tab_switching=True,
        )

    # ── Internals ─────────────────────────────────────────────

    def _close(self, session_id: str, status: str, user_id: str = None) -> ProctorSessionView:
        now = self.clock()
        with self.session_factory() as db:
            with db.begin():
                if user_id is None:
                    session = self._load(db, session_id)
                else:
                    session = self._load_owned(db, session_id, user_id)
                if session.status != ACTIVE:
                    raise NotActive("Session is not active", session_id=session_id)

                rows = db.query(ProctorSession).filter(
                    ProctorSession.id == session_id,
                    ProctorSession.status == ACTIVE
                ).update({
                    ProctorSession.status: status,
                    ProctorSession.ended_at: now,
                }, synchronize_session=False)
                if rows != 1:
                    raise NotActive("Session was closed concurrently", session_id=session_id)
                db.refresh(session)
                view = _session_view(session)

        log_with_context(logger, "INFO", "Proctor session {}".format(status),
                         context={"session_id": session_id, "attempt_id": view.attempt_id,
                                  "user_id": view.user_id},
                         extra_data={"anomaly_score": view.anomaly_score,
                                     "events": view.event_count})
        return view

    def _load(self, db: Session, session_id: str) -> ProctorSession:
        session = db.get(ProctorSession, session_id)
        if session is None:
            raise NotFound("Session not found", session_id=session_id)
        return session

    def _load_owned(self, db: Session, session_id: str, user_id: str) -> ProctorSession:
        session = self._load(db, session_id)
        if session.user_id != user_id:
            raise Forbidden("Permission denied", session_id=session_id)
        return session
