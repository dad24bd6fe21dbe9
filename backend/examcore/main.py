"""
Proctored Assessment Engine - FastAPI Application Entry Point.

This is the main application module that:
1. Initializes the FastAPI app with CORS middleware
2. Sets up structured JSON logging
3. Implements request ID middleware (X-Request-ID header)
4. Wires the attempt and proctor engines onto app.state
5. Maps engine errors and storage failures to JSON error responses

Layout:
- routes/: API endpoint handlers
- models/: SQLAlchemy ORM models
- services/: attempt engine, proctor engine, grading, catalog, session cache
- logging_config.py: Structured logging configuration
- database.py: Database connection management
"""

import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from examcore.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from examcore.errors import ExamCoreError, HTTP_STATUS_BY_KIND
from examcore.routes import attempts, proctor, catalog
from examcore.database import DATABASE_URL, SessionLocal, create_tables
from examcore.services.attempt_engine import AttemptEngine
from examcore.services.proctor_engine import ProctorEngine
from examcore.services.session_cache import build_session_cache
from examcore.timeutils import utcnow

# ──────────────────────────────────────────────────────────────
# Initialize structured logging BEFORE anything else
# ──────────────────────────────────────────────────────────────
setup_logging()
logger = get_logger("http")

# Auto-create tables for SQLite local development
if DATABASE_URL.startswith("sqlite"):
    logger.info("Using SQLite - creating tables directly")
    create_tables()

# ──────────────────────────────────────────────────────────────
# Create FastAPI application
# ──────────────────────────────────────────────────────────────
app = FastAPI(
    title="Proctored Assessment Engine",
    description=(
        "Timed assessment attempts with inline auto-grading and final scoring, "
        "plus proctoring sessions that accumulate an anomaly score from "
        "client-reported events."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)


def configure_engines(application: FastAPI, session_factory=SessionLocal,
                      cache=None, clock=utcnow, rng=None):
    """
    Attach the session factory, session cache and both engines to app.state.

    Tests call this again with their own database, cache and clock.
    """
    cache = cache if cache is not None else build_session_cache()
    application.state.session_factory = session_factory
    application.state.cache = cache
    application.state.attempt_engine = AttemptEngine(session_factory, cache, clock=clock, rng=rng)
    application.state.proctor_engine = ProctorEngine(session_factory, clock=clock)


configure_engines(app)


# ──────────────────────────────────────────────────────────────
# Request ID Middleware
#
# Generates a unique request ID per incoming request, stores it in a
# context variable for every log entry, and returns it in X-Request-ID.
# ──────────────────────────────────────────────────────────────
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = generate_request_id()
    request_id_var.set(req_id)

    start_time = time.time()

    log_with_context(logger, "INFO",
        f"Request started: {request.method} {request.url.path}",
        context={"request_id": req_id},
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent", ""),
        })

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id

    log_with_context(logger, "INFO",
        f"Request completed: {request.method} {request.url.path} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "status_code": response.status_code
        })

    return response


@app.exception_handler(ExamCoreError)
async def exam_core_error_handler(request: Request, exc: ExamCoreError):
    """Turn a business-rule violation into its JSON error response."""
    status_code = HTTP_STATUS_BY_KIND.get(exc.kind, 400)
    log_with_context(logger, "WARNING",
        f"{request.method} {request.url.path} rejected: {exc.message}",
        extra_data={"error": exc.kind, "code": exc.__class__.__name__,
                    "status_code": status_code, **exc.context})
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    """Unexpected database failure: log the traceback, answer 503."""
    log_with_context(logger, "ERROR",
        f"{request.method} {request.url.path} failed: storage error",
        extra_data={"code": exc.__class__.__name__},
        exc_info=exc)
    return JSONResponse(status_code=503, content={
        "error": "StorageError",
        "code": exc.__class__.__name__,
        "detail": "Storage unavailable, try again",
    })


# ──────────────────────────────────────────────────────────────
# Register API routes
# ──────────────────────────────────────────────────────────────
app.include_router(attempts.router, tags=["Attempts"])
app.include_router(proctor.router, tags=["Proctoring"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint for Docker health checks and monitoring."""
    return {"status": "healthy", "service": "examcore-backend", "version": "1.0.0"}


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "service": "Proctored Assessment Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "start_attempt": "POST /api/assessments/{id}/attempts",
            "attempt_questions": "GET /api/attempts/{id}/questions",
            "submit_answer": "POST /api/attempts/{id}/answers",
            "finish_attempt": "POST /api/attempts/{id}/submit",
            "time_check": "POST /api/attempts/{id}/time-check",
            "results": "GET /api/attempts/{id}/results",
            "abandon": "POST /api/attempts/{id}/abandon",
            "sweep": "POST /api/attempts/sweep",
            "start_session": "POST /api/proctor/sessions",
            "end_session": "POST /api/proctor/sessions/{id}/end",
            "terminate_session": "POST /api/proctor/sessions/{id}/terminate",
            "record_event": "POST /api/proctor/events",
            "session_events": "GET /api/proctor/sessions/{id}/events",
            "lockdown": "GET /api/proctor/lockdown/{id}",
            "create_question": "POST /api/questions",
            "create_assessment": "POST /api/assessments",
            "assessment_status": "POST /api/assessments/{id}/status"
        }
    }
