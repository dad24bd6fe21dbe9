"""
Pydantic views returned by the engines.

The engines build these inside their transaction so callers never touch
ORM objects after the session is closed.
"""

from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field


class AnswerSlotView(BaseModel):
    question_id: str
    position: int
    max_points: int
    answer: Any = None
    is_correct: Optional[bool] = None
    points: int = 0
    time_spent: int = 0


class AttemptView(BaseModel):
    id: str
    assessment_id: str
    user_id: str
    attempt_number: int
    status: str
    started_at: datetime
    expires_at: datetime
    ended_at: Optional[datetime] = None
    completion_time: Optional[float] = None
    total_score: int = 0
    max_possible_score: int = 0
    slots: List[AnswerSlotView] = Field(default_factory=list)


class QuestionOptionView(BaseModel):
    id: str
    text: Optional[str] = None
    is_correct: Optional[bool] = None


class AttemptQuestionView(BaseModel):
    """A question as the test-taker sees it inside an attempt."""
    question_id: str
    position: int
    type: str
    text: Optional[str] = None
    image: Optional[str] = None
    code: Optional[str] = None
    options: List[QuestionOptionView] = Field(default_factory=list)
    points: int
    time_estimate: Optional[int] = None
    answer: Any = None


class AttemptResult(BaseModel):
    attempt_id: str
    status: str
    total_score: int
    max_possible_score: int
    percentage: float
    passed: bool
    completion_time: Optional[float] = None


class AttemptResultDetail(AttemptResult):
    attempt: AttemptView


class DeviceSetting(BaseModel):
    required: bool = False
    enabled: bool = False


class ProctorSettings(BaseModel):
    """Settings snapshot taken when a proctor session starts."""
    webcam: DeviceSetting = Field(default_factory=lambda: DeviceSetting(required=True))
    screen_sharing: DeviceSetting = Field(default_factory=DeviceSetting)
    audio: DeviceSetting = Field(default_factory=DeviceSetting)
    full_screen_required: bool = True
    browser_lockdown: bool = False


class Snapshot(BaseModel):
    image: Optional[str] = None
    screen_capture: Optional[str] = None


class ProctorSessionView(BaseModel):
    id: str
    attempt_id: str
    user_id: str
    assessment_id: str
    status: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    settings: ProctorSettings
    anomaly_score: float = 0.0
    event_count: int = 0


class ProctorEventView(BaseModel):
    id: str
    sequence: int
    type: str
    severity: str
    timestamp: datetime
    details: Any = None
    snapshot: Optional[Snapshot] = None


class SessionEventsView(BaseModel):
    session: ProctorSessionView
    events: List[ProctorEventView] = Field(default_factory=list)


class LockdownConfig(BaseModel):
    full_screen_required: bool
    browser_lockdown: bool
    allowed_domains: List[str]
    blocked_keys: List[str]
    prevent_copy_paste: bool
    prevent_tab_switching: bool
