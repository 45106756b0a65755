"""Acquisition ledger: manual acquisition records on plan materials.

The manual portion (purchased, gifted, owned, ...) is user-owned and survives
recalculation. The manufactured portion is derived by the build-progress
reconciler and is never written here.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from eve_industry_planner.application.errors import bad_request, not_found
from eve_industry_planner.domain.plan import (
    MANUAL_ACQUISITION_METHODS,
    METHOD_MANUFACTURED,
    METHOD_MIXED,
    METHOD_OTHER,
    METHOD_PURCHASED,
    AcquisitionLogEntry,
)
from eve_industry_planner.infrastructure.persistence import plan_ledger_repo


logger = logging.getLogger(__name__)

MODE_SET = "set"
MODE_ADD = "add"


def effective_acquisition(
    manual_quantity: int,
    manual_method: Optional[str],
    manufactured_quantity: int,
) -> Tuple[Optional[str], Optional[str]]:
    """Return (acquisition_method, system_note) for a material's two acquisition portions."""

    manual_quantity = int(manual_quantity or 0)
    manufactured_quantity = int(manufactured_quantity or 0)
    if manufactured_quantity > 0 and manual_quantity > 0:
        return (
            METHOD_MIXED,
            f"Manufactured: {manufactured_quantity}, {manual_method or METHOD_OTHER}: {manual_quantity}",
        )
    if manufactured_quantity > 0:
        return METHOD_MANUFACTURED, "Auto-acquired from built components"
    if manual_quantity > 0:
        return manual_method or METHOD_PURCHASED, None
    return None, None


def refresh_effective_method(row: Any) -> None:
    row.acquisition_method, row.system_note = effective_acquisition(
        row.manually_acquired_quantity, row.manual_acquisition_method, row.manufactured_quantity
    )


def _material_or_404(session, plan_id: int, type_id: int):
    row = plan_ledger_repo.get_material_model(session, plan_id, type_id)
    if row is None:
        raise not_found(f"Material {type_id} in plan", plan_id)
    return row


def _validate_price(custom_price: Any) -> Optional[float]:
    if custom_price is None:
        return None
    try:
        price = float(custom_price)
    except (TypeError, ValueError):
        raise bad_request("custom_price must be a number", custom_price=custom_price)
    if price < 0:
        raise bad_request("custom_price must not be negative", custom_price=price)
    return price


def mark_material_acquired(
    session,
    plan_id: int,
    type_id: int,
    *,
    quantity: Any,
    method: str = METHOD_PURCHASED,
    custom_price: Any = None,
    note: Optional[str] = None,
    mode: str = MODE_SET,
) -> Dict[str, Any]:
    """Record a manual acquisition. `set` replaces the manual quantity, `add` increments it."""

    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise bad_request("quantity must be an integer", quantity=quantity)
    if qty <= 0:
        raise bad_request("quantity must be greater than zero", quantity=qty)
    if mode not in (MODE_SET, MODE_ADD):
        raise bad_request("mode must be 'set' or 'add'", mode=mode)
    method = method or METHOD_PURCHASED
    if method not in MANUAL_ACQUISITION_METHODS:
        raise bad_request(
            f"acquisition method must be one of {sorted(MANUAL_ACQUISITION_METHODS)}",
            acquisition_method=method,
        )
    price = _validate_price(custom_price)

    row = _material_or_404(session, plan_id, type_id)
    before = int(row.manually_acquired_quantity or 0)
    after = qty if mode == MODE_SET else before + qty

    row.manually_acquired_quantity = after
    row.manual_acquisition_method = method
    row.acquired_at = datetime.now()
    if price is not None:
        row.custom_price = price
    if note is not None:
        row.acquisition_note = note
    refresh_effective_method(row)

    plan_ledger_repo.log_acquisition(
        session,
        plan_id,
        type_id,
        action=mode,
        quantity_before=before,
        quantity_after=after,
        acquisition_method=method,
        custom_price=row.custom_price,
        note=note,
    )
    session.flush()

    total = after + int(row.manufactured_quantity or 0)
    excess = max(0, total - int(row.quantity))
    if excess:
        logger.info("Plan %s: material %s acquired %s over requirement", plan_id, type_id, excess)
    return {
        "type_id": int(type_id),
        "manually_acquired_quantity": after,
        "new_total": total,
        "has_excess": excess > 0,
        "excess_amount": excess,
    }


def unmark_material_acquired(session, plan_id: int, type_id: int) -> None:
    row = _material_or_404(session, plan_id, type_id)
    before = int(row.manually_acquired_quantity or 0)

    row.manually_acquired_quantity = 0
    row.manual_acquisition_method = None
    row.custom_price = None
    row.acquisition_note = None
    row.acquired_at = None
    refresh_effective_method(row)

    plan_ledger_repo.log_acquisition(session, plan_id, type_id, action="remove", quantity_before=before, quantity_after=0)
    session.flush()


def update_material_custom_price(session, plan_id: int, type_id: int, custom_price: Any) -> None:
    price = _validate_price(custom_price)
    row = _material_or_404(session, plan_id, type_id)
    row.custom_price = price
    manual = int(row.manually_acquired_quantity or 0)
    plan_ledger_repo.log_acquisition(
        session,
        plan_id,
        type_id,
        action="price",
        quantity_before=manual,
        quantity_after=manual,
        acquisition_method=row.manual_acquisition_method,
        custom_price=price,
    )
    session.flush()


def cleanup_excess_acquisitions(session, plan_id: int, type_id: Optional[int] = None) -> int:
    """Trim manual acquisitions so the acquired total does not exceed the requirement."""

    rows = plan_ledger_repo.material_models(session, plan_id)
    if type_id is not None:
        rows = [r for r in rows if int(r.type_id) == int(type_id)]

    adjusted = 0
    for row in rows:
        manual = int(row.manually_acquired_quantity or 0)
        made = int(row.manufactured_quantity or 0)
        if manual <= 0 or manual + made <= int(row.quantity):
            continue
        trimmed = max(0, int(row.quantity) - made)
        row.manually_acquired_quantity = trimmed
        if trimmed == 0:
            row.manual_acquisition_method = None
        refresh_effective_method(row)
        plan_ledger_repo.log_acquisition(
            session,
            plan_id,
            row.type_id,
            action="cleanup",
            quantity_before=manual,
            quantity_after=trimmed,
            acquisition_method=row.manual_acquisition_method,
            note="Excess acquisition removed",
            performed_by="system",
        )
        adjusted += 1
    session.flush()
    return adjusted


def get_acquisition_log(session, plan_id: int, type_id: Optional[int] = None, limit: int = 100) -> List[AcquisitionLogEntry]:
    return plan_ledger_repo.list_acquisition_log(session, plan_id, type_id=type_id, limit=limit)
