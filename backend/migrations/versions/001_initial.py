"""Initial migration - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates all database tables for the Proctored Assessment Engine:
- questions: Question catalog with JSON options and tags
- assessments: Timed assessment definitions
- assessment_questions: Ordered question list with point overrides
- attempts: Attempts with durable deadline and version counter
- answer_slots: One graded answer slot per question of an attempt
- proctor_sessions: Proctoring sessions with anomaly accumulator
- proctor_events: Append-only proctoring event timeline

Also creates the uniqueness constraints the engines rely on for
concurrency (attempt numbers, one active proctor session per attempt).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Questions Table ───────────────────────────────────────
    op.create_table(
        'questions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('content_text', sa.Text(), nullable=True),
        sa.Column('content_image', sa.Text(), nullable=True),
        sa.Column('content_code', sa.Text(), nullable=True),
        sa.Column('options', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('correct_answer', sa.Text(), nullable=True),
        sa.Column('difficulty', sa.String(16), nullable=False, server_default='medium'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('tags', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('time_estimate', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Assessments Table ─────────────────────────────────────
    op.create_table(
        'assessments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('passing_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('randomize_questions', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('allowed_attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('proctoring_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('webcam_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('screensharing_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('lockdown_browser_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='draft'),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Assessment Questions Table ────────────────────────────
    op.create_table(
        'assessment_questions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('assessment_id', sa.String(36),
                  sa.ForeignKey('assessments.id'), nullable=False),
        sa.Column('question_id', sa.String(36),
                  sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=True),
        sa.UniqueConstraint('assessment_id', 'question_id',
                            name='uq_assessment_questions_question'),
    )
    op.create_index('ix_assessment_questions_assessment_id', 'assessment_questions', ['assessment_id'])

    # ── Attempts Table ────────────────────────────────────────
    op.create_table(
        'attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('assessment_id', sa.String(36),
                  sa.ForeignKey('assessments.id'), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('completion_time', sa.Float(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='in-progress'),
        sa.Column('total_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_possible_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('assessment_id', 'user_id', 'attempt_number',
                            name='uq_attempts_assessment_user_number'),
    )
    op.create_index('ix_attempts_user_id', 'attempts', ['user_id'])
    op.create_index('ix_attempts_status', 'attempts', ['status'])

    # ── Answer Slots Table ────────────────────────────────────
    op.create_table(
        'answer_slots',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('attempt_id', sa.String(36),
                  sa.ForeignKey('attempts.id'), nullable=False),
        sa.Column('question_id', sa.String(36),
                  sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('max_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('answer', sa.Text(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('attempt_id', 'question_id',
                            name='uq_answer_slots_attempt_question'),
    )

    # ── Proctor Sessions Table ────────────────────────────────
    op.create_table(
        'proctor_sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('attempt_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('assessment_id', sa.String(36), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('settings', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('anomaly_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('event_count', sa.Integer(), nullable=False, server_default='0'),
    )
    # At most one active session per (attempt, user)
    op.create_index('uq_proctor_sessions_active', 'proctor_sessions',
                    ['attempt_id', 'user_id'], unique=True,
                    postgresql_where=sa.text("status = 'active'"),
                    sqlite_where=sa.text("status = 'active'"))
    op.create_index('ix_proctor_sessions_attempt_id', 'proctor_sessions', ['attempt_id'])

    # ── Proctor Events Table ──────────────────────────────────
    op.create_table(
        'proctor_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('session_id', sa.String(36),
                  sa.ForeignKey('proctor_sessions.id'), nullable=False),
        sa.Column('attempt_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('assessment_id', sa.String(36), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('severity', sa.String(8), nullable=False, server_default='medium'),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('snapshot', sa.Text(), nullable=True),
    )
    op.create_index('ix_proctor_events_session_sequence', 'proctor_events',
                    ['session_id', 'sequence'], unique=True)
    op.create_index('ix_proctor_events_attempt_id', 'proctor_events', ['attempt_id'])


def downgrade() -> None:
    op.drop_table('proctor_events')
    op.drop_table('proctor_sessions')
    op.drop_table('answer_slots')
    op.drop_table('attempts')
    op.drop_table('assessment_questions')
    op.drop_table('assessments')
    op.drop_table('questions')
