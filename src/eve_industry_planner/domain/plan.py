from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


PLAN_STATUS_ACTIVE = "active"
PLAN_STATUS_COMPLETED = "completed"
PLAN_STATUS_ARCHIVED = "archived"
PLAN_STATUSES = frozenset({PLAN_STATUS_ACTIVE, PLAN_STATUS_COMPLETED, PLAN_STATUS_ARCHIVED})

MODE_RAW_MATERIALS = "raw_materials"
MODE_COMPONENTS = "components"
MODE_BUILD_BUY = "build_buy"
EXPANSION_MODES = frozenset({MODE_RAW_MATERIALS, MODE_COMPONENTS, MODE_BUILD_BUY})
EXPANDING_MODES = frozenset({MODE_RAW_MATERIALS, MODE_BUILD_BUY})

# SDE blueprint activities a plan entry can run.
ACTIVITY_MANUFACTURING = "manufacturing"
ACTIVITY_REACTION = "reaction"
ACTIVITIES = frozenset({ACTIVITY_MANUFACTURING, ACTIVITY_REACTION})

METHOD_PURCHASED = "purchased"
METHOD_GIFT = "gift"
METHOD_OWNED = "owned"
METHOD_CONTRACT = "contract"
METHOD_OTHER = "other"
METHOD_MANUFACTURED = "manufactured"
METHOD_MIXED = "mixed"
# Methods a user may record. "manufactured" and "mixed" are derived from build progress.
MANUAL_ACQUISITION_METHODS = frozenset({METHOD_PURCHASED, METHOD_GIFT, METHOD_OWNED, METHOD_CONTRACT, METHOD_OTHER})


def expands(mode: Optional[str]) -> bool:
    return (mode or MODE_RAW_MATERIALS) in EXPANDING_MODES


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Plan:
    id: int
    character_id: int
    plan_name: str
    status: str = PLAN_STATUS_ACTIVE
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @staticmethod
    def from_model(model: Any) -> "Plan":
        return Plan(
            id=int(model.id),
            character_id=int(model.character_id),
            plan_name=str(model.plan_name),
            status=str(getattr(model, "status", None) or PLAN_STATUS_ACTIVE),
            description=getattr(model, "description", None),
            created_at=getattr(model, "created_at", None),
            updated_at=getattr(model, "updated_at", None),
            completed_at=getattr(model, "completed_at", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "character_id": self.character_id,
            "plan_name": self.plan_name,
            "status": self.status,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }


@dataclass(frozen=True)
class PlanEntry:
    id: int
    plan_id: int
    blueprint_type_id: int
    runs: int
    lines: int = 1
    me_level: int = 0
    te_level: int = 0
    parent_entry_id: Optional[int] = None
    facility_id: Optional[int] = None
    facility_snapshot: Optional[Dict[str, Any]] = None
    is_intermediate: bool = False
    expansion_mode: str = MODE_RAW_MATERIALS
    built_runs: int = 0
    is_built: bool = False
    intermediate_product_type_id: Optional[int] = None
    activity: str = ACTIVITY_MANUFACTURING
    added_at: Optional[datetime] = None

    @staticmethod
    def from_model(model: Any) -> "PlanEntry":
        return PlanEntry(
            id=int(model.id),
            plan_id=int(model.plan_id),
            blueprint_type_id=int(model.blueprint_type_id),
            runs=int(model.runs),
            lines=int(getattr(model, "lines", None) or 1),
            me_level=int(getattr(model, "me_level", None) or 0),
            te_level=int(getattr(model, "te_level", None) or 0),
            parent_entry_id=getattr(model, "parent_entry_id", None),
            facility_id=getattr(model, "facility_id", None),
            facility_snapshot=getattr(model, "facility_snapshot", None),
            is_intermediate=bool(getattr(model, "is_intermediate", False)),
            expansion_mode=str(getattr(model, "expansion_mode", None) or MODE_RAW_MATERIALS),
            built_runs=int(getattr(model, "built_runs", None) or 0),
            is_built=bool(getattr(model, "is_built", False)),
            intermediate_product_type_id=getattr(model, "intermediate_product_type_id", None),
            activity=str(getattr(model, "activity", None) or ACTIVITY_MANUFACTURING),
            added_at=getattr(model, "added_at", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "parent_entry_id": self.parent_entry_id,
            "blueprint_type_id": self.blueprint_type_id,
            "runs": self.runs,
            "lines": self.lines,
            "me_level": self.me_level,
            "te_level": self.te_level,
            "facility_id": self.facility_id,
            "facility_snapshot": self.facility_snapshot,
            "is_intermediate": self.is_intermediate,
            "expansion_mode": self.expansion_mode,
            "built_runs": self.built_runs,
            "is_built": self.is_built,
            "intermediate_product_type_id": self.intermediate_product_type_id,
            "activity": self.activity,
            "added_at": _iso(self.added_at),
        }


@dataclass(frozen=True)
class PlanSettings:
    """Per-plan market and industry overrides. A `None` field falls back to the global setting."""

    plan_id: int
    input_region_id: Optional[int] = None
    input_location_id: Optional[int] = None
    input_price_kind: Optional[str] = None
    output_region_id: Optional[int] = None
    output_location_id: Optional[int] = None
    output_price_kind: Optional[str] = None
    reactions_as_intermediates: bool = False
    updated_at: Optional[datetime] = None

    @staticmethod
    def from_model(model: Any) -> "PlanSettings":
        return PlanSettings(
            plan_id=int(model.plan_id),
            input_region_id=getattr(model, "input_region_id", None),
            input_location_id=getattr(model, "input_location_id", None),
            input_price_kind=getattr(model, "input_price_kind", None),
            output_region_id=getattr(model, "output_region_id", None),
            output_location_id=getattr(model, "output_location_id", None),
            output_price_kind=getattr(model, "output_price_kind", None),
            reactions_as_intermediates=bool(getattr(model, "reactions_as_intermediates", False)),
            updated_at=getattr(model, "updated_at", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "input_region_id": self.input_region_id,
            "input_location_id": self.input_location_id,
            "input_price_kind": self.input_price_kind,
            "output_region_id": self.output_region_id,
            "output_location_id": self.output_location_id,
            "output_price_kind": self.output_price_kind,
            "reactions_as_intermediates": self.reactions_as_intermediates,
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class MaterialLine:
    plan_id: int
    type_id: int
    quantity: int
    base_price: Optional[float] = None
    price_frozen_at: Optional[datetime] = None
    manually_acquired_quantity: int = 0
    manual_acquisition_method: Optional[str] = None
    custom_price: Optional[float] = None
    acquisition_note: Optional[str] = None
    acquired_at: Optional[datetime] = None
    manufactured_quantity: int = 0
    acquisition_method: Optional[str] = None
    system_note: Optional[str] = None

    @property
    def total_acquired(self) -> int:
        return int(self.manually_acquired_quantity) + int(self.manufactured_quantity)

    @property
    def remaining_quantity(self) -> int:
        return max(0, int(self.quantity) - self.total_acquired)

    @property
    def excess_quantity(self) -> int:
        return max(0, self.total_acquired - int(self.quantity))

    @staticmethod
    def from_model(model: Any) -> "MaterialLine":
        return MaterialLine(
            plan_id=int(model.plan_id),
            type_id=int(model.type_id),
            quantity=int(model.quantity),
            base_price=getattr(model, "base_price", None),
            price_frozen_at=getattr(model, "price_frozen_at", None),
            manually_acquired_quantity=int(getattr(model, "manually_acquired_quantity", None) or 0),
            manual_acquisition_method=getattr(model, "manual_acquisition_method", None),
            custom_price=getattr(model, "custom_price", None),
            acquisition_note=getattr(model, "acquisition_note", None),
            acquired_at=getattr(model, "acquired_at", None),
            manufactured_quantity=int(getattr(model, "manufactured_quantity", None) or 0),
            acquisition_method=getattr(model, "acquisition_method", None),
            system_note=getattr(model, "system_note", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "type_id": self.type_id,
            "quantity": self.quantity,
            "base_price": self.base_price,
            "price_frozen_at": _iso(self.price_frozen_at),
            "manually_acquired_quantity": self.manually_acquired_quantity,
            "manual_acquisition_method": self.manual_acquisition_method,
            "custom_price": self.custom_price,
            "acquisition_note": self.acquisition_note,
            "acquired_at": _iso(self.acquired_at),
            "manufactured_quantity": self.manufactured_quantity,
            "acquisition_method": self.acquisition_method,
            "system_note": self.system_note,
            "total_acquired": self.total_acquired,
            "remaining_quantity": self.remaining_quantity,
        }


@dataclass(frozen=True)
class ProductLine:
    plan_id: int
    type_id: int
    quantity: int
    base_price: Optional[float] = None
    price_frozen_at: Optional[datetime] = None
    is_intermediate: bool = False
    intermediate_depth: int = 0

    @staticmethod
    def from_model(model: Any) -> "ProductLine":
        return ProductLine(
            plan_id=int(model.plan_id),
            type_id=int(model.type_id),
            quantity=int(model.quantity),
            base_price=getattr(model, "base_price", None),
            price_frozen_at=getattr(model, "price_frozen_at", None),
            is_intermediate=bool(getattr(model, "is_intermediate", False)),
            intermediate_depth=int(getattr(model, "intermediate_depth", None) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "type_id": self.type_id,
            "quantity": self.quantity,
            "base_price": self.base_price,
            "price_frozen_at": _iso(self.price_frozen_at),
            "is_intermediate": self.is_intermediate,
            "intermediate_depth": self.intermediate_depth,
        }


@dataclass(frozen=True)
class AcquisitionLogEntry:
    id: int
    plan_id: int
    type_id: int
    action: str
    quantity_before: int
    quantity_after: int
    acquisition_method: Optional[str] = None
    custom_price: Optional[float] = None
    note: Optional[str] = None
    performed_by: str = "user"
    created_at: Optional[datetime] = None

    @staticmethod
    def from_model(model: Any) -> "AcquisitionLogEntry":
        return AcquisitionLogEntry(
            id=int(model.id),
            plan_id=int(model.plan_id),
            type_id=int(model.type_id),
            action=str(model.action),
            quantity_before=int(model.quantity_before or 0),
            quantity_after=int(model.quantity_after or 0),
            acquisition_method=getattr(model, "acquisition_method", None),
            custom_price=getattr(model, "custom_price", None),
            note=getattr(model, "note", None),
            performed_by=str(getattr(model, "performed_by", None) or "user"),
            created_at=getattr(model, "created_at", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "type_id": self.type_id,
            "action": self.action,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "acquisition_method": self.acquisition_method,
            "custom_price": self.custom_price,
            "note": self.note,
            "performed_by": self.performed_by,
            "created_at": _iso(self.created_at),
        }
