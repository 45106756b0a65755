from typing import Optional, Any
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, declarative_base
from sqlalchemy.sql import func
from sqlalchemy import BigInteger, DateTime, Integer, String, Text, Float, Boolean, JSON, ForeignKey, UniqueConstraint


BaseApp = declarative_base()
BaseSde = declarative_base()


# --------------------------
# Manufacturing plans
# --------------------------
class ManufacturingPlanModel(BaseApp):
    __tablename__ = "manufacturing_plans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    character_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    plan_name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ManufacturingPlan(id={self.id}, plan_name='{self.plan_name}', character_id={self.character_id})>"


class PlanEntryModel(BaseApp):
    __tablename__ = "plan_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("manufacturing_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Plain column: intermediates are pruned by the orphan collector, not by the database.
    parent_entry_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    blueprint_type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    runs: Mapped[int] = mapped_column(Integer, nullable=False)
    lines: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    me_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    te_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    facility_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    facility_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    is_intermediate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expansion_mode: Mapped[str] = mapped_column(String, nullable=False, default="raw_materials")
    built_runs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_built: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    intermediate_product_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    activity: Mapped[str] = mapped_column(String, nullable=False, default="manufacturing")
    added_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<PlanEntry(id={self.id}, plan_id={self.plan_id}, blueprint_type_id={self.blueprint_type_id}, "
            f"parent_entry_id={self.parent_entry_id}, runs={self.runs})>"
        )


class PlanSettingsModel(BaseApp):
    __tablename__ = "plan_settings"

    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("manufacturing_plans.id", ondelete="CASCADE"), primary_key=True
    )
    # NULL means "use the global setting".
    input_region_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    input_location_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    input_price_kind: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    output_region_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    output_location_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    output_price_kind: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    reactions_as_intermediates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<PlanSettings(plan_id={self.plan_id}, reactions_as_intermediates={self.reactions_as_intermediates})>"


class PlanMaterialModel(BaseApp):
    __tablename__ = "plan_materials"
    __table_args__ = (UniqueConstraint("plan_id", "type_id", name="uq_plan_materials_plan_type"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("manufacturing_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    base_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    price_frozen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Manual (non-manufactured) portion, carried forward across recalculations.
    manually_acquired_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    manual_acquisition_method: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    custom_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    acquisition_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    acquired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Derived from built intermediates on every reconcile.
    manufactured_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    acquisition_method: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    system_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<PlanMaterial(plan_id={self.plan_id}, type_id={self.type_id}, quantity={self.quantity})>"


class PlanProductModel(BaseApp):
    __tablename__ = "plan_products"
    __table_args__ = (UniqueConstraint("plan_id", "type_id", name="uq_plan_products_plan_type"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("manufacturing_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    base_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    price_frozen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_intermediate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    intermediate_depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<PlanProduct(plan_id={self.plan_id}, type_id={self.type_id}, is_intermediate={self.is_intermediate})>"


class PlanAcquisitionLogModel(BaseApp):
    __tablename__ = "plan_acquisition_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("manufacturing_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    acquisition_method: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    custom_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[str] = mapped_column(String, nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# --------------------------
# Character data
# --------------------------
class CharacterAssetsModel(BaseApp):
    __tablename__ = "character_assets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    character_id: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    type_category_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    location_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_singleton: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_blueprint_copy: Mapped[bool] = mapped_column(Boolean, nullable=False)
    blueprint_runs: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    blueprint_time_efficiency: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    blueprint_material_efficiency: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


# --------------------------
# SDE
# --------------------------
class Blueprints(BaseSde):
    __tablename__ = "blueprints"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    blueprintTypeID: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    maxProductionLimit: Mapped[int] = mapped_column(Integer, nullable=False)
    activities: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
