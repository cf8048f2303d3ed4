"""
Create ticket table for favor requests.
"""

from alembic import op
import sqlalchemy as sa

revision = '20261018_create_ticket'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'ticket',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('ref', sa.String(length=128), nullable=False),
        sa.Column('creator_slug', sa.String(length=128), nullable=False),
        sa.Column('lane', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='open'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('ticket_number', sa.Integer(), nullable=True),
        sa.Column('queue_number', sa.Integer(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('tip_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requester_name', sa.Text(), nullable=True),
        sa.Column('requester_email', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.String(length=32), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('creator_slug', 'ticket_number', name='uq_ticket_creator_ticket_number'),
        sa.UniqueConstraint('creator_slug', 'lane', 'queue_number', name='uq_ticket_creator_lane_queue_number'),
    )
    op.create_index('ix__ticket_id', 'ticket', ['id'])
    op.create_index('ix__ticket_ref', 'ticket', ['ref'], unique=True)
    op.create_index('ix__ticket_creator_slug', 'ticket', ['creator_slug'])
    op.create_index('ix__ticket_status', 'ticket', ['status'])


def downgrade():
    op.drop_index('ix__ticket_status', table_name='ticket')
    op.drop_index('ix__ticket_creator_slug', table_name='ticket')
    op.drop_index('ix__ticket_ref', table_name='ticket')
    op.drop_index('ix__ticket_id', table_name='ticket')
    op.drop_table('ticket')
