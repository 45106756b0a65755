from __future__ import annotations

from typing import Any

from flask import Blueprint, request

from eve_industry_planner.application.errors import ServiceError
from eve_industry_planner.application.plans.service import PlansService

from planner_api.bootstrap import require_ready
from planner_api.deps import get_state
from planner_api.http import ok
from planner_api.session_provider import FlaskSessionProvider


plans_bp = Blueprint("plans", __name__, url_prefix="/plans")


def _service() -> PlansService:
    require_ready()
    return PlansService(state=get_state(), sessions=FlaskSessionProvider())


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ServiceError("Request body must be a JSON object", status_code=400)
    return body


def _optional_int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ServiceError(f"Query parameter '{name}' must be an integer", status_code=400)


def _optional_bool_arg(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


# --------------------------
# Plans
# --------------------------
@plans_bp.get("")
def list_plans():
    character_id = _optional_int_arg("character_id")
    if character_id is None:
        raise ServiceError("Query parameter 'character_id' is required", status_code=400)
    plans = _service().list_plans(character_id=character_id, status=request.args.get("status") or None)
    return ok(data=plans)


@plans_bp.post("")
def create_plan():
    plan = _service().create_plan(data=_json_body())
    return ok(data=plan, message="Manufacturing plan created", status_code=201)


@plans_bp.get("/<int:plan_id>")
def get_plan(plan_id: int):
    return ok(data=_service().get_plan(plan_id=plan_id))


@plans_bp.patch("/<int:plan_id>")
def update_plan(plan_id: int):
    plan = _service().update_plan(plan_id=plan_id, data=_json_body())
    return ok(data=plan, message="Manufacturing plan updated")


@plans_bp.delete("/<int:plan_id>")
def delete_plan(plan_id: int):
    _service().delete_plan(plan_id=plan_id)
    return ok(message="Manufacturing plan deleted")


@plans_bp.get("/<int:plan_id>/summary")
def plan_summary(plan_id: int):
    return ok(data=_service().plan_summary(plan_id=plan_id))


@plans_bp.post("/<int:plan_id>/recalculate")
def recalculate(plan_id: int):
    body = _json_body()
    result = _service().recalculate(plan_id=plan_id, refresh_prices=bool(body.get("refresh_prices", False)))
    return ok(data=result)


@plans_bp.get("/<int:plan_id>/settings")
def get_plan_settings(plan_id: int):
    return ok(data=_service().get_plan_settings(plan_id=plan_id))


@plans_bp.put("/<int:plan_id>/settings")
def update_plan_settings(plan_id: int):
    out = _service().update_plan_settings(plan_id=plan_id, data=_json_body())
    return ok(data=out, message="Plan settings updated")


# --------------------------
# Entries
# --------------------------
@plans_bp.get("/<int:plan_id>/entries")
def list_entries(plan_id: int):
    return ok(data=_service().list_entries(plan_id=plan_id))


@plans_bp.get("/<int:plan_id>/intermediates")
def list_intermediates(plan_id: int):
    return ok(data=_service().list_intermediates(plan_id=plan_id))


@plans_bp.post("/<int:plan_id>/entries")
def add_entry(plan_id: int):
    out = _service().add_entry(plan_id=plan_id, data=_json_body())
    return ok(data=out, message="Blueprint added to plan", status_code=201)


@plans_bp.patch("/<int:plan_id>/entries")
def bulk_update_entries(plan_id: int):
    updates = _json_body().get("updates") or []
    if not isinstance(updates, list):
        raise ServiceError("'updates' must be a list", status_code=400)
    result = _service().bulk_update_entries(plan_id=plan_id, updates=updates)
    return ok(data=result, message=f"Updated {len(updates)} entries")


@plans_bp.patch("/entries/<int:entry_id>")
def update_entry(entry_id: int):
    return ok(data=_service().update_entry(entry_id=entry_id, data=_json_body()))


@plans_bp.delete("/entries/<int:entry_id>")
def remove_entry(entry_id: int):
    result = _service().remove_entry(entry_id=entry_id)
    return ok(data=result, message="Entry removed from plan")


@plans_bp.put("/entries/<int:entry_id>/built")
def mark_built(entry_id: int):
    body = _json_body()
    if "built_runs" not in body:
        raise ServiceError("'built_runs' is required", status_code=400)
    result = _service().mark_built(entry_id=entry_id, built_runs=body["built_runs"])
    return ok(data=result)


@plans_bp.get("/<int:plan_id>/reactions")
def list_reactions(plan_id: int):
    return ok(data=_service().list_reactions(plan_id=plan_id))


@plans_bp.put("/reactions/<int:entry_id>/built")
def mark_reaction_built(entry_id: int):
    body = _json_body()
    if "built_runs" not in body:
        raise ServiceError("'built_runs' is required", status_code=400)
    result = _service().mark_reaction_built(entry_id=entry_id, built_runs=body["built_runs"])
    return ok(data=result)


# --------------------------
# Ledgers
# --------------------------
@plans_bp.get("/<int:plan_id>/materials")
def list_materials(plan_id: int):
    return ok(data=_service().list_materials(plan_id=plan_id))


@plans_bp.get("/<int:plan_id>/products")
def list_products(plan_id: int):
    products = _service().list_products(plan_id=plan_id, is_intermediate=_optional_bool_arg("is_intermediate"))
    return ok(data=products)


@plans_bp.post("/<int:plan_id>/materials/<int:type_id>/acquired")
def mark_material_acquired(plan_id: int, type_id: int):
    out = _service().mark_material_acquired(plan_id=plan_id, type_id=type_id, data=_json_body())
    return ok(data=out)


@plans_bp.delete("/<int:plan_id>/materials/<int:type_id>/acquired")
def unmark_material_acquired(plan_id: int, type_id: int):
    _service().unmark_material_acquired(plan_id=plan_id, type_id=type_id)
    return ok(message="Acquisition removed")


@plans_bp.put("/<int:plan_id>/materials/<int:type_id>/custom_price")
def update_custom_price(plan_id: int, type_id: int):
    body = _json_body()
    _service().update_material_custom_price(plan_id=plan_id, type_id=type_id, custom_price=body.get("custom_price"))
    return ok(message="Custom price updated")


@plans_bp.post("/<int:plan_id>/acquisitions/cleanup")
def cleanup_excess(plan_id: int):
    body = _json_body()
    type_id = body.get("type_id")
    adjusted = _service().cleanup_excess_acquisitions(
        plan_id=plan_id, type_id=int(type_id) if type_id is not None else None
    )
    return ok(data={"adjusted": adjusted})


@plans_bp.get("/<int:plan_id>/acquisitions/log")
def acquisition_log(plan_id: int):
    limit = _optional_int_arg("limit") or 100
    log = _service().get_acquisition_log(plan_id=plan_id, type_id=_optional_int_arg("type_id"), limit=limit)
    return ok(data=log)
