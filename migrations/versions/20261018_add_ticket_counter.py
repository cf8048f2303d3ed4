"""
Add ticket_counter table for per-creator global and per-lane numbering.
"""

from alembic import op
import sqlalchemy as sa

revision = '20261018_add_ticket_counter'
down_revision = '20261018_create_ticket'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'ticket_counter',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('creator_slug', sa.String(length=128), nullable=False),
        sa.Column('next_ticket_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('next_personal_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('next_priority_number', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('creator_slug', name='uq_ticket_counter_creator'),
    )
    op.create_index('ix__ticket_counter_id', 'ticket_counter', ['id'])
    op.create_index('ix__ticket_counter_creator_slug', 'ticket_counter', ['creator_slug'])


def downgrade():
    op.drop_index('ix__ticket_counter_creator_slug', table_name='ticket_counter')
    op.drop_index('ix__ticket_counter_id', table_name='ticket_counter')
    op.drop_table('ticket_counter')
