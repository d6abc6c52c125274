"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('credits_balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_daily_grant_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('target_score', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('credits_balance >= 0', name='ck_users_balance_non_negative'),
        sa.CheckConstraint("role IN ('user', 'teacher', 'admin')", name='ck_users_role'),
    )

    # ========================================================================
    # Create exercises table
    # ========================================================================
    op.create_table(
        'exercises',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('image_url', sa.String(1024), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_mock_test', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint('version > 0', name='ck_exercises_version_positive'),
    )

    op.create_index('idx_exercises_type_published', 'exercises', ['type', 'is_published'])

    # ========================================================================
    # Create attempts table
    # ========================================================================
    op.create_table(
        'attempts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('exercise_id', sa.Uuid(), sa.ForeignKey('exercises.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('state', sa.String(20), nullable=False, server_default='CREATED'),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('evaluated_at', sa.DateTime(timezone=True), nullable=True),

        sa.CheckConstraint(
            "state IN ('CREATED', 'IN_PROGRESS', 'SUBMITTED', 'EVALUATING', 'EVALUATED')",
            name='ck_attempts_state',
        ),
        sa.CheckConstraint(
            "score IS NULL OR state IN ('EVALUATING', 'EVALUATED')",
            name='ck_attempts_score_requires_evaluated',
        ),
    )

    # Open-attempt lookup (resume instead of duplicate)
    op.create_index(
        'idx_attempts_user_exercise_state', 'attempts', ['user_id', 'exercise_id', 'state']
    )

    # At most one open attempt per (user, exercise); concurrent starts resume
    open_attempt = sa.text("state IN ('CREATED', 'IN_PROGRESS')")
    op.create_index(
        'uq_attempts_open_per_exercise',
        'attempts',
        ['user_id', 'exercise_id'],
        unique=True,
        postgresql_where=open_attempt,
        sqlite_where=open_attempt,
    )
    op.create_index('idx_attempts_user_created', 'attempts', ['user_id', 'created_at'])

    # ========================================================================
    # Create credit_transactions table (append-only ledger)
    # ========================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('feature_key', sa.String(100), nullable=True),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column(
            'refund_of_id',
            sa.Uuid(),
            sa.ForeignKey('credit_transactions.id', ondelete='RESTRICT'),
            nullable=True,
            unique=True,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint('balance_after >= 0', name='ck_credit_transactions_balance_after'),
    )

    op.create_index(
        'idx_credit_transactions_user_created', 'credit_transactions', ['user_id', 'created_at']
    )

    # ========================================================================
    # Create feature_pricing table
    # ========================================================================
    op.create_table(
        'feature_pricing',
        sa.Column('feature_key', sa.String(100), primary_key=True),
        sa.Column('cost', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.CheckConstraint('cost >= 0', name='ck_feature_pricing_cost_non_negative'),
    )

    # Default catalog
    pricing = sa.table(
        'feature_pricing',
        sa.column('feature_key', sa.String),
        sa.column('cost', sa.Integer),
        sa.column('is_active', sa.Boolean),
    )
    op.bulk_insert(
        pricing,
        [
            {'feature_key': 'writing_evaluation', 'cost': 5, 'is_active': True},
            {'feature_key': 'speaking_evaluation', 'cost': 5, 'is_active': True},
            {'feature_key': 'text_rewriter', 'cost': 2, 'is_active': True},
            {'feature_key': 'mock_test', 'cost': 10, 'is_active': True},
            {'feature_key': 'chart_image_analysis', 'cost': 3, 'is_active': True},
        ],
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('feature_pricing')
    op.drop_index('idx_credit_transactions_user_created', table_name='credit_transactions')
    op.drop_table('credit_transactions')
    op.drop_index('idx_attempts_user_created', table_name='attempts')
    op.drop_index('uq_attempts_open_per_exercise', table_name='attempts')
    op.drop_index('idx_attempts_user_exercise_state', table_name='attempts')
    op.drop_table('attempts')
    op.drop_index('idx_exercises_type_published', table_name='exercises')
    op.drop_table('exercises')
    op.drop_table('users')
