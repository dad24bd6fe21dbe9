"""FastAPI dependencies resolving the engines and sessions wired onto app.state."""

from fastapi import Request

from examcore.services.attempt_engine import AttemptEngine
from examcore.services.proctor_engine import ProctorEngine


def get_attempt_engine(request: Request) -> AttemptEngine:
    return request.app.state.attempt_engine


def get_proctor_engine(request: Request) -> ProctorEngine:
    return request.app.state.proctor_engine


def get_db(request: Request):
    """
    Database session for catalog routes.

    Yields a session and ensures it is closed after the request.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
