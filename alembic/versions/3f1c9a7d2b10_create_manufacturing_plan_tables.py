"""create manufacturing plan tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-18 09:12:41.204117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'manufacturing_plans',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('character_id', sa.Integer, nullable=False, index=True),
        sa.Column('plan_name', sa.String, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('status', sa.String, nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime, nullable=True),
    )

    op.create_table(
        'plan_entries',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('plan_id', sa.Integer, sa.ForeignKey('manufacturing_plans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('parent_entry_id', sa.Integer, nullable=True, index=True),
        sa.Column('blueprint_type_id', sa.Integer, nullable=False),
        sa.Column('runs', sa.Integer, nullable=False),
        sa.Column('lines', sa.Integer, nullable=False, server_default='1'),
        sa.Column('me_level', sa.Integer, nullable=False, server_default='0'),
        sa.Column('te_level', sa.Integer, nullable=False, server_default='0'),
        sa.Column('facility_id', sa.BigInteger, nullable=True),
        sa.Column('facility_snapshot', sa.JSON, nullable=True),
        sa.Column('is_intermediate', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('expansion_mode', sa.String, nullable=False, server_default='raw_materials'),
        sa.Column('built_runs', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_built', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('intermediate_product_type_id', sa.Integer, nullable=True),
        sa.Column('added_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'plan_materials',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('plan_id', sa.Integer, sa.ForeignKey('manufacturing_plans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('type_id', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('base_price', sa.Float, nullable=True),
        sa.Column('price_frozen_at', sa.DateTime, nullable=True),
        sa.Column('manually_acquired_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('manual_acquisition_method', sa.String, nullable=True),
        sa.Column('custom_price', sa.Float, nullable=True),
        sa.Column('acquisition_note', sa.Text, nullable=True),
        sa.Column('acquired_at', sa.DateTime, nullable=True),
        sa.Column('manufactured_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('acquisition_method', sa.String, nullable=True),
        sa.Column('system_note', sa.Text, nullable=True),
        sa.UniqueConstraint('plan_id', 'type_id', name='uq_plan_materials_plan_type'),
    )

    op.create_table(
        'plan_products',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('plan_id', sa.Integer, sa.ForeignKey('manufacturing_plans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('type_id', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('base_price', sa.Float, nullable=True),
        sa.Column('price_frozen_at', sa.DateTime, nullable=True),
        sa.Column('is_intermediate', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('intermediate_depth', sa.Integer, nullable=False, server_default='0'),
        sa.UniqueConstraint('plan_id', 'type_id', name='uq_plan_products_plan_type'),
    )

    op.create_table(
        'plan_acquisition_log',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('plan_id', sa.Integer, sa.ForeignKey('manufacturing_plans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('type_id', sa.Integer, nullable=False),
        sa.Column('action', sa.String, nullable=False),
        sa.Column('quantity_before', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_after', sa.Integer, nullable=False, server_default='0'),
        sa.Column('acquisition_method', sa.String, nullable=True),
        sa.Column('custom_price', sa.Float, nullable=True),
        sa.Column('note', sa.Text, nullable=True),
        sa.Column('performed_by', sa.String, nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'character_assets',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('character_id', sa.Integer, nullable=False),
        sa.Column('item_id', sa.BigInteger, unique=True, nullable=False),
        sa.Column('type_id', sa.Integer, nullable=False),
        sa.Column('type_name', sa.String, nullable=True),
        sa.Column('type_category_name', sa.String, nullable=True),
        sa.Column('location_id', sa.BigInteger, nullable=False),
        sa.Column('is_singleton', sa.Boolean, nullable=False),
        sa.Column('is_blueprint_copy', sa.Boolean, nullable=False),
        sa.Column('blueprint_runs', sa.Integer, nullable=True),
        sa.Column('blueprint_time_efficiency', sa.Integer, nullable=True),
        sa.Column('blueprint_material_efficiency', sa.Integer, nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('character_assets')
    op.drop_table('plan_acquisition_log')
    op.drop_table('plan_products')
    op.drop_table('plan_materials')
    op.drop_table('plan_entries')
    op.drop_table('manufacturing_plans')
