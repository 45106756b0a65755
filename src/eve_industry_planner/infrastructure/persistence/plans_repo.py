"""Plans and plan entries.

Functions flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from eve_industry_planner.db_models import (
    ManufacturingPlanModel,
    PlanAcquisitionLogModel,
    PlanEntryModel,
    PlanMaterialModel,
    PlanProductModel,
    PlanSettingsModel,
)
from eve_industry_planner.domain.plan import (
    ACTIVITY_MANUFACTURING,
    MODE_RAW_MATERIALS,
    PLAN_STATUS_ACTIVE,
    Plan,
    PlanEntry,
    PlanSettings,
)
from eve_industry_planner.domain.plan_tree import PlanNode, PlanTree


PLAN_UPDATABLE_FIELDS = ("plan_name", "description", "status", "completed_at")
ENTRY_UPDATABLE_FIELDS = (
    "runs",
    "lines",
    "me_level",
    "te_level",
    "facility_id",
    "facility_snapshot",
    "expansion_mode",
)
PLAN_SETTINGS_FIELDS = (
    "input_region_id",
    "input_location_id",
    "input_price_kind",
    "output_region_id",
    "output_location_id",
    "output_price_kind",
    "reactions_as_intermediates",
)


# --------------------------
# Plans
# --------------------------
def get_plan_model(session, plan_id: int) -> Optional[ManufacturingPlanModel]:
    return session.query(ManufacturingPlanModel).filter(ManufacturingPlanModel.id == int(plan_id)).first()


def get_plan(session, plan_id: int) -> Optional[Plan]:
    model = get_plan_model(session, plan_id)
    return Plan.from_model(model) if model is not None else None


def list_by_character_id(session, character_id: int, status: Optional[str] = None) -> List[Plan]:
    q = session.query(ManufacturingPlanModel).filter(ManufacturingPlanModel.character_id == int(character_id))
    if status is not None:
        q = q.filter(ManufacturingPlanModel.status == status)
    rows = q.order_by(ManufacturingPlanModel.created_at.desc(), ManufacturingPlanModel.id.desc()).all()
    return [Plan.from_model(r) for r in rows]


def create_plan(session, data: Dict[str, Any]) -> int:
    now = datetime.now()
    plan = ManufacturingPlanModel(
        character_id=int(data["character_id"]),
        plan_name=data.get("plan_name") or f"Plan - {now.strftime('%Y-%m-%d %H:%M:%S')}",
        description=data.get("description"),
        status=data.get("status") or PLAN_STATUS_ACTIVE,
        created_at=now,
        updated_at=now,
    )
    session.add(plan)
    session.flush()
    return int(plan.id)


def update_plan(session, plan_id: int, data: Dict[str, Any]) -> None:
    plan = get_plan_model(session, plan_id)
    if not plan:
        raise ValueError(f"Manufacturing plan with id {plan_id} not found.")

    for field in PLAN_UPDATABLE_FIELDS:
        if field in data:
            setattr(plan, field, data[field])

    plan.updated_at = datetime.now()
    session.flush()


def touch_plan(session, plan_id: int) -> None:
    session.query(ManufacturingPlanModel).filter(ManufacturingPlanModel.id == int(plan_id)).update(
        {"updated_at": datetime.now()}
    )


def delete_plan(session, plan_id: int) -> None:
    plan = get_plan_model(session, plan_id)
    if not plan:
        raise ValueError(f"Manufacturing plan with id {plan_id} not found.")

    # SQLite does not enforce ON DELETE CASCADE unless foreign keys are switched on.
    for model in (PlanAcquisitionLogModel, PlanProductModel, PlanMaterialModel, PlanSettingsModel, PlanEntryModel):
        session.query(model).filter(model.plan_id == int(plan_id)).delete(synchronize_session="fetch")
    session.delete(plan)
    session.flush()


# --------------------------
# Plan settings
# --------------------------
def get_plan_settings(session, plan_id: int) -> PlanSettings:
    """Stored overrides for a plan; a plan without a row gets all-default settings."""

    model = session.query(PlanSettingsModel).filter(PlanSettingsModel.plan_id == int(plan_id)).first()
    return PlanSettings.from_model(model) if model is not None else PlanSettings(plan_id=int(plan_id))


def upsert_plan_settings(session, plan_id: int, data: Dict[str, Any]) -> None:
    model = session.query(PlanSettingsModel).filter(PlanSettingsModel.plan_id == int(plan_id)).first()
    if model is None:
        model = PlanSettingsModel(plan_id=int(plan_id), reactions_as_intermediates=False)
        session.add(model)

    for field in PLAN_SETTINGS_FIELDS:
        if field in data:
            setattr(model, field, data[field])

    model.updated_at = datetime.now()
    session.flush()


# --------------------------
# Entries
# --------------------------
def get_entry_model(session, entry_id: int) -> Optional[PlanEntryModel]:
    return session.query(PlanEntryModel).filter(PlanEntryModel.id == int(entry_id)).first()


def get_entry(session, entry_id: int) -> Optional[PlanEntry]:
    model = get_entry_model(session, entry_id)
    return PlanEntry.from_model(model) if model is not None else None


def list_entries(
    session, plan_id: int, *, is_intermediate: Optional[bool] = None, activity: Optional[str] = None
) -> List[PlanEntry]:
    q = session.query(PlanEntryModel).filter(PlanEntryModel.plan_id == int(plan_id))
    if is_intermediate is not None:
        q = q.filter(PlanEntryModel.is_intermediate == bool(is_intermediate))
    if activity is not None:
        q = q.filter(PlanEntryModel.activity == activity)
    rows = q.order_by(PlanEntryModel.id.asc()).all()
    return [PlanEntry.from_model(r) for r in rows]


def add_entry(session, plan_id: int, data: Dict[str, Any]) -> int:
    entry = PlanEntryModel(
        plan_id=int(plan_id),
        parent_entry_id=None,
        blueprint_type_id=int(data["blueprint_type_id"]),
        runs=int(data["runs"]),
        lines=int(data.get("lines") or 1),
        me_level=int(data.get("me_level") or 0),
        te_level=int(data.get("te_level") or 0),
        facility_id=data.get("facility_id"),
        facility_snapshot=data.get("facility_snapshot"),
        is_intermediate=False,
        expansion_mode=data.get("expansion_mode") or MODE_RAW_MATERIALS,
        built_runs=0,
        is_built=False,
        activity=data.get("activity") or ACTIVITY_MANUFACTURING,
        added_at=datetime.now(),
    )
    session.add(entry)
    session.flush()
    return int(entry.id)


def update_entry(session, entry_id: int, data: Dict[str, Any]) -> None:
    entry = get_entry_model(session, entry_id)
    if not entry:
        raise ValueError(f"Plan entry with id {entry_id} not found.")

    for field in ENTRY_UPDATABLE_FIELDS:
        if field in data:
            setattr(entry, field, data[field])

    if entry.built_runs > entry.runs:
        entry.built_runs = entry.runs
    entry.is_built = entry.runs > 0 and entry.built_runs >= entry.runs
    session.flush()


def set_built_runs(session, entry_id: int, built_runs: int) -> None:
    entry = get_entry_model(session, entry_id)
    if not entry:
        raise ValueError(f"Plan entry with id {entry_id} not found.")
    entry.built_runs = int(built_runs)
    entry.is_built = entry.runs > 0 and entry.built_runs >= entry.runs
    session.flush()


def delete_entries(session, entry_ids: Iterable[int]) -> int:
    ids = sorted({int(i) for i in entry_ids})
    if not ids:
        return 0
    deleted = (
        session.query(PlanEntryModel).filter(PlanEntryModel.id.in_(ids)).delete(synchronize_session="fetch")
    )
    session.flush()
    return int(deleted or 0)


# --------------------------
# Tree boundary
# --------------------------
def load_tree(session, plan_id: int) -> PlanTree:
    return PlanTree.from_entries(plan_id, list_entries(session, plan_id))


def _apply_node(model: PlanEntryModel, node: PlanNode) -> None:
    model.runs = int(node.runs)
    model.lines = int(node.lines)
    model.me_level = int(node.me_level)
    model.te_level = int(node.te_level)
    model.facility_id = node.facility_id
    model.facility_snapshot = node.facility_snapshot
    model.expansion_mode = node.expansion_mode
    model.built_runs = int(node.built_runs)
    model.is_built = bool(node.is_built)
    model.parent_entry_id = node.parent_entry_id


def save_tree(session, tree: PlanTree) -> Dict[str, int]:
    """Write pending tree changes: deletes, then inserts parent-first, then updates."""

    deleted = delete_entries(session, tree.removed_entry_ids)

    inserted = 0
    for node in tree.pending_inserts():
        parent = tree.parent_of(node.slot)
        model = PlanEntryModel(
            plan_id=int(tree.plan_id),
            parent_entry_id=parent.entry_id if parent is not None else None,
            blueprint_type_id=int(node.blueprint_type_id),
            runs=int(node.runs),
            is_intermediate=bool(node.is_intermediate),
            intermediate_product_type_id=node.intermediate_product_type_id,
            activity=node.activity,
            added_at=datetime.now(),
        )
        node.parent_entry_id = model.parent_entry_id
        _apply_node(model, node)
        session.add(model)
        session.flush()
        tree.bind_entry_id(node.slot, int(model.id))
        inserted += 1

    updated = 0
    pending = {n.entry_id: n for n in tree.pending_updates()}
    if pending:
        rows = session.query(PlanEntryModel).filter(PlanEntryModel.id.in_(list(pending))).all()
        for model in rows:
            _apply_node(model, pending[model.id])
            updated += 1
        session.flush()

    tree.mark_clean()
    return {"inserted": inserted, "updated": updated, "deleted": deleted}
