"""add plan settings and entry activity

Revision ID: 8c4d2e6f1a37
Revises: 3f1c9a7d2b10
Create Date: 2026-10-18 14:37:05.918342

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c4d2e6f1a37'
down_revision: Union[str, Sequence[str], None] = '3f1c9a7d2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    with op.batch_alter_table('plan_entries') as batch_op:
        batch_op.add_column(sa.Column('activity', sa.String, nullable=False, server_default='manufacturing'))

    op.create_table(
        'plan_settings',
        sa.Column('plan_id', sa.Integer, sa.ForeignKey('manufacturing_plans.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('input_region_id', sa.Integer, nullable=True),
        sa.Column('input_location_id', sa.BigInteger, nullable=True),
        sa.Column('input_price_kind', sa.String, nullable=True),
        sa.Column('output_region_id', sa.Integer, nullable=True),
        sa.Column('output_location_id', sa.BigInteger, nullable=True),
        sa.Column('output_price_kind', sa.String, nullable=True),
        sa.Column('reactions_as_intermediates', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('plan_settings')
    with op.batch_alter_table('plan_entries') as batch_op:
        batch_op.drop_column('activity')
