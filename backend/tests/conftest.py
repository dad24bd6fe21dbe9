"""
Exam Core - Test Configuration and Fixtures
"""
import os
import random
import tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

import jwt
import pytest

# Set testing environment before the application modules read it
_tmp_dir = tempfile.mkdtemp(prefix="examcore-tests-")
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_tmp_dir, 'app.db')}"
os.environ['REDIS_URL'] = ''
os.environ['JWT_SECRET'] = 'test-jwt-secret-key-for-testing-only-0123456789'
os.environ['LOG_LEVEL'] = 'WARNING'

from examcore.database import build_engine, build_session_factory, create_tables
from examcore.services.attempt_engine import AttemptEngine
from examcore.services.proctor_engine import ProctorEngine
from examcore.services.session_cache import InMemorySessionCache
from examcore.services.catalog import create_question, create_assessment

START = datetime(2026, 3, 2, 10, 0, 0)


class FakeClock:
    """Controllable naive-UTC clock injected into the engines."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime):
        self.now = now
        return self.now


def option_list(option_ids, correct):
    return [{"id": oid, "text": f"Option {oid}", "isCorrect": oid in correct}
            for oid in option_ids]


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite file per test"""
    db_engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_tables(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache():
    return InMemorySessionCache()


@pytest.fixture
def attempt_engine(session_factory, cache, clock):
    return AttemptEngine(session_factory, cache, clock=clock, rng=random.Random(7))


@pytest.fixture
def proctor_engine(session_factory, clock):
    return ProctorEngine(session_factory, clock=clock)


@pytest.fixture
def seed(session_factory):
    """
    Create questions and one assessment in a single commit.

    Each question entry is a dict with optional keys type, points, options,
    correct and override (per-assessment points). Returns a namespace with
    assessment_id and question_ids in authored order.
    """
    def _seed(questions=None, **assessment_kwargs):
        questions = questions or [{"type": "single-choice", "points": 5, "correct": ["b"]}]
        settings = {
            "title": "Algebra Quiz",
            "duration": 60,
            "status": "published",
            "allowed_attempts": 1,
            "passing_score": 3,
            "created_by": "instructor-1",
        }
        settings.update(assessment_kwargs)

        with session_factory() as db:
            question_ids = []
            refs = []
            for entry in questions:
                qtype = entry.get("type", "single-choice")
                if qtype == "true-false":
                    default_options = ("true", "false")
                elif qtype in ("single-choice", "multiple-choice"):
                    default_options = ("a", "b", "c", "d")
                else:
                    default_options = ()
                options = option_list(entry.get("options", default_options), entry.get("correct", []))
                question = create_question(
                    db,
                    type=qtype,
                    content={"text": entry.get("text", "Question text")},
                    options=options,
                    points=entry.get("points", 1),
                    created_by="instructor-1",
                )
                question_ids.append(question.id)
                refs.append({"question_id": question.id, "points": entry.get("override")})

            assessment = create_assessment(db, questions=refs, **settings)
            db.commit()
            return SimpleNamespace(assessment_id=assessment.id, question_ids=question_ids,
                                   total_points=assessment.total_points)

    return _seed


@pytest.fixture
def make_token():
    """Mint HS256 bearer tokens the way the identity provider would"""
    def _make(user_id: str, role: str = "student") -> str:
        return jwt.encode({"sub": user_id, "role": role},
                          os.environ['JWT_SECRET'], algorithm="HS256")
    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id: str, role: str = "student") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}
    return _headers
