"""
Tests for proctor sessions, event ingestion and lockdown policy
"""
from datetime import timedelta

import pytest

from examcore.errors import (
    NotFound, Forbidden, NotActive, SessionAlreadyActive, ValidationError
)
from examcore.schemas import ProctorSettings, DeviceSetting, Snapshot


def start(engine, attempt_id="attempt-1", user_id="student-1", settings=None):
    return engine.start_session(attempt_id, "assessment-1", user_id, settings)


class TestSessionLifecycle:

    def test_start_session(self, proctor_engine, clock):
        session = start(proctor_engine)

        assert session.status == "active"
        assert session.started_at == clock()
        assert session.anomaly_score == 0.0
        assert session.event_count == 0
        assert session.settings.webcam.required is True
        assert session.settings.full_screen_required is True

    def test_settings_are_snapshotted(self, proctor_engine, clock):
        settings = ProctorSettings(
            webcam=DeviceSetting(required=True, enabled=True),
            screen_sharing=DeviceSetting(required=True, enabled=False),
            browser_lockdown=True,
        )
        session = start(proctor_engine, settings=settings)

        events = proctor_engine.get_session_events(session.id, "student-1", "student")
        assert events.session.settings == settings

    def test_second_active_session_is_rejected(self, proctor_engine):
        start(proctor_engine)
        with pytest.raises(SessionAlreadyActive):
            start(proctor_engine)

    def test_new_session_after_end(self, proctor_engine):
        first = start(proctor_engine)
        proctor_engine.end_session(first.id, "student-1")
        second = start(proctor_engine)
        assert second.id != first.id

    def test_end_session(self, proctor_engine, clock):
        session = start(proctor_engine)
        clock.advance(minutes=20)

        ended = proctor_engine.end_session(session.id, "student-1")

        assert ended.status == "completed"
        assert ended.ended_at == session.started_at + timedelta(minutes=20)

    def test_end_twice_is_not_active(self, proctor_engine):
        session = start(proctor_engine)
        proctor_engine.end_session(session.id, "student-1")
        with pytest.raises(NotActive):
            proctor_engine.end_session(session.id, "student-1")

    def test_end_other_users_session(self, proctor_engine):
        session = start(proctor_engine)
        with pytest.raises(Forbidden):
            proctor_engine.end_session(session.id, "student-2")

    def test_end_unknown_session(self, proctor_engine):
        with pytest.raises(NotFound):
            proctor_engine.end_session("missing", "student-1")

    def test_instructor_terminates(self, proctor_engine):
        session = start(proctor_engine)
        terminated = proctor_engine.terminate_session(session.id, "instructor")
        assert terminated.status == "terminated"

    def test_student_cannot_terminate(self, proctor_engine):
        session = start(proctor_engine)
        with pytest.raises(Forbidden):
            proctor_engine.terminate_session(session.id, "student")


class TestRecordEvent:

    def test_weights_accumulate(self, proctor_engine):
        """low=0.2, medium=0.5, high=1.0, no cap"""
        session = start(proctor_engine)
        for severity in ("low", "medium", "high", "high"):
            proctor_engine.record_event(session.id, "student-1", "tab-switch", severity)

        timeline = proctor_engine.get_session_events(session.id, "student-1", "student")
        assert timeline.session.anomaly_score == pytest.approx(2.7)
        assert timeline.session.event_count == 4

    def test_default_severity_is_medium(self, proctor_engine):
        session = start(proctor_engine)
        proctor_engine.record_event(session.id, "student-1", "audio-detected")
        timeline = proctor_engine.get_session_events(session.id, "student-1", "student")
        assert timeline.events[0].severity == "medium"
        assert timeline.session.anomaly_score == pytest.approx(0.5)

    def test_events_are_ordered(self, proctor_engine, clock):
        session = start(proctor_engine)
        types = ["tab-switch", "full-screen-exit", "face-not-detected", "multiple-faces"]
        ids = []
        for event_type in types:
            clock.advance(seconds=5)
            ids.append(proctor_engine.record_event(session.id, "student-1", event_type, "low"))

        timeline = proctor_engine.get_session_events(session.id, "student-1", "student")
        assert [e.id for e in timeline.events] == ids
        assert [e.type for e in timeline.events] == types
        assert [e.sequence for e in timeline.events] == [1, 2, 3, 4]

    def test_details_and_snapshot_are_kept(self, proctor_engine):
        session = start(proctor_engine)
        proctor_engine.record_event(
            session.id, "student-1", "multiple-faces", "high",
            details={"faces": 2}, snapshot=Snapshot(image="s3://captures/1.png"))

        event = proctor_engine.get_session_events(session.id, "student-1", "student").events[0]
        assert event.details == {"faces": 2}
        assert event.snapshot.image == "s3://captures/1.png"
        assert event.snapshot.screen_capture is None

    def test_unknown_type(self, proctor_engine):
        session = start(proctor_engine)
        with pytest.raises(ValidationError):
            proctor_engine.record_event(session.id, "student-1", "sneezing", "low")

    def test_unknown_severity(self, proctor_engine):
        session = start(proctor_engine)
        with pytest.raises(ValidationError):
            proctor_engine.record_event(session.id, "student-1", "tab-switch", "critical")

    def test_closed_session_rejects_events(self, proctor_engine):
        session = start(proctor_engine)
        proctor_engine.end_session(session.id, "student-1")
        with pytest.raises(NotActive):
            proctor_engine.record_event(session.id, "student-1", "tab-switch", "low")

    def test_other_user_is_forbidden(self, proctor_engine):
        session = start(proctor_engine)
        with pytest.raises(Forbidden):
            proctor_engine.record_event(session.id, "student-2", "tab-switch", "low")

    def test_unknown_session(self, proctor_engine):
        with pytest.raises(NotFound):
            proctor_engine.record_event("missing", "student-1", "tab-switch", "low")


class TestSessionEvents:

    def test_reviewer_can_read(self, proctor_engine):
        session = start(proctor_engine)
        proctor_engine.record_event(session.id, "student-1", "tab-switch", "low")
        timeline = proctor_engine.get_session_events(session.id, "instructor-9", "instructor")
        assert len(timeline.events) == 1

    def test_other_student_is_forbidden(self, proctor_engine):
        session = start(proctor_engine)
        with pytest.raises(Forbidden):
            proctor_engine.get_session_events(session.id, "student-2", "student")


class TestLockdownConfig:

    def test_policy_and_session_flags(self, proctor_engine):
        session = start(proctor_engine, settings=ProctorSettings(browser_lockdown=True))
        config = proctor_engine.get_lockdown_config(session.id, "student-1")

        assert config.full_screen_required is True
        assert config.browser_lockdown is True
        assert config.blocked_keys == ["PrintScreen", "ContextMenu"]
        assert config.allowed_domains
        assert config.prevent_copy_paste is True
        assert config.prevent_tab_switching is True

    def test_owner_only(self, proctor_engine):
        session = start(proctor_engine)
        with pytest.raises(Forbidden):
            proctor_engine.get_lockdown_config(session.id, "instructor-1")
