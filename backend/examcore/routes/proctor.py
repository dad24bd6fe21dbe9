"""
Proctoring API routes.

Session lifecycle (start, end, terminate), event ingestion from the
client-side monitors, the reviewer timeline and the browser lockdown
policy for a session.
"""

from typing import Any, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from examcore.auth import Identity, get_current_user, require_elevated
from examcore.deps import get_proctor_engine
from examcore.schemas import (
    ProctorSettings, ProctorSessionView, SessionEventsView, LockdownConfig, Snapshot
)
from examcore.services.proctor_engine import ProctorEngine

router = APIRouter()


# ── Pydantic schemas ─────────────────────────────────────────

class StartSessionRequest(BaseModel):
    attempt_id: str
    assessment_id: str
    settings: Optional[ProctorSettings] = None


class EventRequest(BaseModel):
    """One signal from the client (tab switch, face detection, ...)."""
    session_id: str
    type: str = Field(..., description="tab-switch, full-screen-exit, face-not-detected, "
                                        "multiple-faces, audio-detected or suspicious-activity")
    severity: str = Field("medium", description="low | medium | high")
    details: Any = None
    snapshot: Optional[Snapshot] = None


@router.post("/api/proctor/sessions", response_model=ProctorSessionView, status_code=201)
def start_session(request: StartSessionRequest,
                  identity: Identity = Depends(get_current_user),
                  engine: ProctorEngine = Depends(get_proctor_engine)):
    return engine.start_session(request.attempt_id, request.assessment_id,
                                identity.user_id, request.settings)


@router.post("/api/proctor/sessions/{session_id}/end", response_model=ProctorSessionView)
def end_session(session_id: str,
                identity: Identity = Depends(get_current_user),
                engine: ProctorEngine = Depends(get_proctor_engine)):
    return engine.end_session(session_id, identity.user_id)


@router.post("/api/proctor/sessions/{session_id}/terminate", response_model=ProctorSessionView)
def terminate_session(session_id: str,
                      identity: Identity = Depends(require_elevated),
                      engine: ProctorEngine = Depends(get_proctor_engine)):
    """Instructor/admin shutdown of a running session."""
    return engine.terminate_session(session_id, identity.role)


@router.post("/api/proctor/events", status_code=201)
def record_event(request: EventRequest,
                 identity: Identity = Depends(get_current_user),
                 engine: ProctorEngine = Depends(get_proctor_engine)):
    event_id = engine.record_event(request.session_id, identity.user_id, request.type,
                                   request.severity, request.details, request.snapshot)
    return {"message": "Proctoring event recorded", "event_id": event_id}


@router.get("/api/proctor/sessions/{session_id}/events", response_model=SessionEventsView)
def get_session_events(session_id: str,
                       identity: Identity = Depends(get_current_user),
                       engine: ProctorEngine = Depends(get_proctor_engine)):
    """Session metadata plus its events in recording order."""
    return engine.get_session_events(session_id, identity.user_id, identity.role)


@router.get("/api/proctor/lockdown/{session_id}", response_model=LockdownConfig)
def get_lockdown_config(session_id: str,
                        identity: Identity = Depends(get_current_user),
                        engine: ProctorEngine = Depends(get_proctor_engine)):
    return engine.get_lockdown_config(session_id, identity.user_id)
