"""add conventions + notifications tables

Revision ID: 20261018_add_conventions
Revises: 
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_add_conventions'
down_revision = None
branch_labels = None
depends_on = None

ADDRESS_COLUMNS = (
    'student_email', 'guardian_email', 'teacher_email', 'company_rep_email',
    'tutor_email', 'school_head_email', 'tracking_teacher_email',
)
CODE_COLUMNS = (
    'student_code', 'parent_code', 'teacher_code', 'company_code', 'tutor_code', 'head_code',
    'attestation_code', 'attestation_hash', 'certificate_hash',
)


def upgrade():
    op.create_table(
        'conventions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('owner_id', sa.String(), nullable=True),
        sa.Column('school_id', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('signatures', sa.JSON(), nullable=False),
        sa.Column('attestation', sa.JSON(), nullable=False),
        sa.Column('audit_logs', sa.JSON(), nullable=False),
        sa.Column('absences', sa.JSON(), nullable=False),
        sa.Column('feedbacks', sa.JSON(), nullable=False),
        sa.Column('invalid_emails', sa.JSON(), nullable=False),
        sa.Column('last_reminder_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *[sa.Column(name, sa.String(), nullable=True) for name in ADDRESS_COLUMNS],
        *[sa.Column(name, sa.String(length=32), nullable=True) for name in CODE_COLUMNS],
    )
    for name in ('owner_id', 'school_id', 'status') + ADDRESS_COLUMNS + CODE_COLUMNS:
        op.create_index(f'ix_conventions_{name}', 'conventions', [name])

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('recipient_address', sa.String(), nullable=False),
        sa.Column('convention_id', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link', sa.String(), nullable=True),
        sa.Column('is_read', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_notifications_recipient_address', 'notifications', ['recipient_address'])
    op.create_index('ix_notifications_convention_id', 'notifications', ['convention_id'])


def downgrade():
    op.drop_index('ix_notifications_convention_id', table_name='notifications')
    op.drop_index('ix_notifications_recipient_address', table_name='notifications')
    op.drop_table('notifications')
    for name in ('owner_id', 'school_id', 'status') + ADDRESS_COLUMNS + CODE_COLUMNS:
        op.drop_index(f'ix_conventions_{name}', table_name='conventions')
    op.drop_table('conventions')
