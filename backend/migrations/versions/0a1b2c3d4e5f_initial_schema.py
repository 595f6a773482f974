"""Initial schema: users, profiles, sessions, quizzes, certifications, payments, api keys

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0a1b2c3d4e5f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONB = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")
TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='client'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', TS, nullable=True),
        sa.CheckConstraint("role in ('client','doctor','admin')", name='ck_users_role'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'client_profiles',
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('total_sessions_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_quizzes_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('primary_goals', JSONB, nullable=True),
    )

    op.create_table(
        'doctor_profiles',
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('license_number', sa.String(), nullable=False, unique=True),
        sa.Column('specializations', JSONB, nullable=False),
        sa.Column('education', JSONB, nullable=False),
        sa.Column('experience', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('working_hours', JSONB, nullable=True),
        sa.Column('session_duration', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('break_between_sessions', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_at', TS, nullable=True),
    )

    op.create_table(
        'sessions',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('client_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('doctor_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='scheduled'),
        sa.Column('scheduled_at', TS, nullable=True),
        sa.Column('started_at', TS, nullable=True),
        sa.Column('ended_at', TS, nullable=True),
        sa.Column('topic', sa.Text(), nullable=True),
        sa.Column('meeting_url', sa.Text(), nullable=True),
        sa.Column('ai_model', sa.String(), nullable=True),
        sa.Column('client_rating', sa.Integer(), nullable=True),
        sa.Column('client_feedback', sa.Text(), nullable=True),
        sa.Column('doctor_rating', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('created_at', TS, nullable=True),
        sa.Column('updated_at', TS, nullable=True),
        sa.CheckConstraint(
            "status in ('scheduled','pending_approval','in_progress','completed','cancelled')",
            name='ck_sessions_status',
        ),
        sa.CheckConstraint("type in ('ai','human')", name='ck_sessions_type'),
        sa.CheckConstraint(
            "client_rating is null or (client_rating between 1 and 5)",
            name='ck_sessions_client_rating',
        ),
        sa.CheckConstraint(
            "doctor_rating is null or (doctor_rating between 1 and 5)",
            name='ck_sessions_doctor_rating',
        ),
    )
    op.create_index('idx_sessions_status', 'sessions', ['status'])
    op.create_index('idx_sessions_client', 'sessions', ['client_id'])
    op.create_index('idx_sessions_doctor_time', 'sessions', ['doctor_id', 'scheduled_at'])

    op.create_table(
        'quiz_results',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('session_id', sa.BigInteger(), sa.ForeignKey('sessions.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('questions', JSONB, nullable=False),
        sa.Column('answers', JSONB, nullable=False),
        sa.Column('correct', JSONB, nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('created_at', TS, nullable=True),
        sa.CheckConstraint('score between 0 and 100', name='ck_quiz_results_score'),
    )
    op.create_index('idx_quiz_results_user_time', 'quiz_results', ['user_id', 'created_at'])

    op.create_table(
        'session_notes',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('session_id', sa.BigInteger(), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('doctor_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('tags', JSONB, nullable=False),
        sa.Column('diagnosis', sa.Text(), nullable=True),
        sa.Column('treatment_plan', sa.Text(), nullable=True),
        sa.Column('next_steps', sa.Text(), nullable=True),
        sa.Column('created_at', TS, nullable=True),
        sa.Column('updated_at', TS, nullable=True),
    )
    op.create_index('idx_notes_doctor_time', 'session_notes', ['doctor_id', 'created_at'])

    op.create_table(
        'certifications',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('requirements', JSONB, nullable=False),
        sa.Column('required_sessions', sa.Integer(), nullable=False),
        sa.Column('required_quizzes', sa.Integer(), nullable=False),
        sa.Column('minimum_score', sa.Integer(), nullable=False, server_default='70'),
        sa.Column('badge_image_url', sa.Text(), nullable=True),
        sa.Column('created_at', TS, nullable=True),
        sa.CheckConstraint(
            'required_sessions >= 0 and required_quizzes >= 0', name='ck_certifications_requirements'
        ),
    )

    op.create_table(
        'user_certifications',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('certification_id', sa.BigInteger(),
                  sa.ForeignKey('certifications.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='locked'),
        sa.Column('progress_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('earned_at', TS, nullable=True),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_at', TS, nullable=True),
        sa.Column('created_at', TS, nullable=True),
        sa.Column('updated_at', TS, nullable=True),
        sa.UniqueConstraint('user_id', 'certification_id', name='uq_user_certification'),
        sa.CheckConstraint(
            "status in ('locked','in_progress','completed','approved','rejected')",
            name='ck_user_certifications_status',
        ),
        sa.CheckConstraint(
            'progress_percentage between 0 and 100', name='ck_user_certifications_progress'
        ),
    )
    op.create_index('idx_user_certifications_status', 'user_certifications', ['status', 'is_approved'])

    op.create_table(
        'payments',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('payment_method', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('transaction_id', sa.String(), nullable=True),
        sa.Column('account_name', sa.String(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('verified_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('verified_at', TS, nullable=True),
        sa.Column('created_at', TS, nullable=True),
        sa.CheckConstraint("status in ('pending','completed','rejected')", name='ck_payments_status'),
        sa.CheckConstraint("payment_method in ('paypal','bank_transfer')", name='ck_payments_method'),
    )
    op.create_index('idx_payments_status', 'payments', ['status', 'is_verified'])

    op.create_table(
        'api_keys',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('key_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('permissions', JSONB, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('expires_at', TS, nullable=True),
        sa.Column('last_used_at', TS, nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', TS, nullable=True),
    )


def downgrade() -> None:
    op.drop_table('api_keys')
    op.drop_index('idx_payments_status', table_name='payments')
    op.drop_table('payments')
    op.drop_index('idx_user_certifications_status', table_name='user_certifications')
    op.drop_table('user_certifications')
    op.drop_table('certifications')
    op.drop_index('idx_notes_doctor_time', table_name='session_notes')
    op.drop_table('session_notes')
    op.drop_index('idx_quiz_results_user_time', table_name='quiz_results')
    op.drop_table('quiz_results')
    op.drop_index('idx_sessions_doctor_time', table_name='sessions')
    op.drop_index('idx_sessions_client', table_name='sessions')
    op.drop_index('idx_sessions_status', table_name='sessions')
    op.drop_table('sessions')
    op.drop_table('doctor_profiles')
    op.drop_table('client_profiles')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
