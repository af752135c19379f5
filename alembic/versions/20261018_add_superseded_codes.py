"""add convention_superseded_codes table

Revision ID: 20261018_add_superseded_codes
Revises: 20261018_add_conventions
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_add_superseded_codes'
down_revision = '20261018_add_conventions'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'convention_superseded_codes',
        sa.Column('code', sa.String(length=32), primary_key=True),
        sa.Column('convention_id', sa.String(), sa.ForeignKey('conventions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_convention_superseded_codes_convention_id', 'convention_superseded_codes', ['convention_id']
    )


def downgrade():
    op.drop_index('ix_convention_superseded_codes_convention_id', table_name='convention_superseded_codes')
    op.drop_table('convention_superseded_codes')
