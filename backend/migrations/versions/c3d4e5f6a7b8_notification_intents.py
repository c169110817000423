"""Persisted notification intents drained by the notifications worker

Revision ID: c3d4e5f6a7b8
Revises: b7c1d2e3f4a5
Create Date: 2026-10-19 14:03:51.402117

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c3d4e5f6a7b8'
down_revision = 'b7c1d2e3f4a5'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('notification_intents',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('kind', sa.String(length=64), nullable=False),
    sa.Column('job_id', sa.Integer(), nullable=True),
    sa.Column('user_id', sa.Integer(), nullable=False),
    sa.Column('data', sa.JSON(), nullable=False),
    sa.Column('channels', sa.JSON(), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('email_sent', sa.Boolean(), nullable=False),
    sa.Column('push_sent', sa.Boolean(), nullable=False),
    sa.Column('errors', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('notification_intents', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_notification_intents_job_id'), ['job_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_intents_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_notification_intents_status'), ['status'], unique=False)
        batch_op.create_index('ix_notification_intents_status_id', ['status', 'id'], unique=False)


def downgrade():
    op.drop_table('notification_intents')
