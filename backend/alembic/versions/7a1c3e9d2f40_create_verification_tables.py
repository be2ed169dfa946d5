"""create_verification_tables

Revision ID: 7a1c3e9d2f40
Revises:
Create Date: 2026-10-12 09:20:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '7a1c3e9d2f40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('verification_sessions',
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('batch_id', sa.UUID(), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('total_transactions', sa.Integer(), nullable=False),
        sa.Column('verified_count', sa.Integer(), nullable=False),
        sa.Column('approved_count', sa.Integer(), nullable=False),
        sa.Column('rejected_count', sa.Integer(), nullable=False),
        sa.Column('current_index', sa.Integer(), nullable=False),
        sa.Column('deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pause_count', sa.Integer(), nullable=False),
        sa.Column('pause_reason', sa.Text(), nullable=True),
        sa.Column('average_risk_score', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_id'),
    )
    op.create_index(op.f('ix_verification_sessions_business_id'), 'verification_sessions', ['business_id'], unique=False)
    op.create_index('ix_verification_sessions_status_deadline', 'verification_sessions', ['status', 'deadline'], unique=False)

    op.create_table('verification_transactions',
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('external_transaction_id', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('store_reference', sa.String(length=100), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('risk_score', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('decision', sa.String(length=20), nullable=False),
        sa.Column('rejection_reason', sa.String(length=50), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decided_by', sa.String(length=100), nullable=True),
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['verification_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_verification_transactions_session_decision', 'verification_transactions', ['session_id', 'decision'], unique=False)
    op.create_index('ix_verification_transactions_session_position', 'verification_transactions', ['session_id', 'position'], unique=True)

    op.create_table('verification_audit_entries',
        sa.Column('session_id', sa.UUID(), nullable=True),
        sa.Column('transaction_id', sa.UUID(), nullable=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('actor_type', sa.String(length=20), nullable=False),
        sa.Column('actor_id', sa.String(length=100), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('metadata', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['verification_sessions.id'], ),
        sa.ForeignKeyConstraint(['transaction_id'], ['verification_transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_verification_audit_entries_event_type'), 'verification_audit_entries', ['event_type'], unique=False)
    op.create_index(op.f('ix_verification_audit_entries_occurred_at'), 'verification_audit_entries', ['occurred_at'], unique=False)
    op.create_index(op.f('ix_verification_audit_entries_transaction_id'), 'verification_audit_entries', ['transaction_id'], unique=False)
    op.create_index('ix_verification_audit_entries_session_occurred', 'verification_audit_entries', ['session_id', 'occurred_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_verification_audit_entries_session_occurred', table_name='verification_audit_entries')
    op.drop_index(op.f('ix_verification_audit_entries_transaction_id'), table_name='verification_audit_entries')
    op.drop_index(op.f('ix_verification_audit_entries_occurred_at'), table_name='verification_audit_entries')
    op.drop_index(op.f('ix_verification_audit_entries_event_type'), table_name='verification_audit_entries')
    op.drop_table('verification_audit_entries')
    op.drop_index('ix_verification_transactions_session_position', table_name='verification_transactions')
    op.drop_index('ix_verification_transactions_session_decision', table_name='verification_transactions')
    op.drop_table('verification_transactions')
    op.drop_index('ix_verification_sessions_status_deadline', table_name='verification_sessions')
    op.drop_index(op.f('ix_verification_sessions_business_id'), table_name='verification_sessions')
    op.drop_table('verification_sessions')
