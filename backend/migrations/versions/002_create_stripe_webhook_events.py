"""Create stripe_webhook_events dedupe ledger

Revision ID: 002
Revises: 001
Create Date: 2026-09-14 10:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Table may already exist if Base.metadata.create_all ran first
    conn = op.get_bind()
    inspector = inspect(conn)

    if 'stripe_webhook_events' not in inspector.get_table_names():
        op.create_table(
            'stripe_webhook_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.String(length=255), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_stripe_webhook_events_id', 'stripe_webhook_events', ['id'])
        op.create_index('ix_stripe_webhook_events_event_type', 'stripe_webhook_events', ['event_type'])

    # The unique index on event_id is what makes duplicate deliveries lose the race
    existing_indexes = [idx['name'] for idx in inspector.get_indexes('stripe_webhook_events')]
    if 'ix_stripe_webhook_events_event_id' not in existing_indexes:
        op.create_index('ix_stripe_webhook_events_event_id', 'stripe_webhook_events', ['event_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_stripe_webhook_events_event_id', table_name='stripe_webhook_events')
    op.drop_table('stripe_webhook_events')
