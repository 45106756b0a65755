"""Material and product ledgers of a plan, plus the acquisition log.

Functions flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from eve_industry_planner.db_models import PlanAcquisitionLogModel, PlanMaterialModel, PlanProductModel
from eve_industry_planner.domain.plan import AcquisitionLogEntry, MaterialLine, ProductLine


def material_models(session, plan_id: int) -> List[PlanMaterialModel]:
    return (
        session.query(PlanMaterialModel)
        .filter(PlanMaterialModel.plan_id == int(plan_id))
        .order_by(PlanMaterialModel.type_id.asc())
        .all()
    )


def get_material_model(session, plan_id: int, type_id: int) -> Optional[PlanMaterialModel]:
    return (
        session.query(PlanMaterialModel)
        .filter(PlanMaterialModel.plan_id == int(plan_id), PlanMaterialModel.type_id == int(type_id))
        .first()
    )


def list_materials(session, plan_id: int) -> List[MaterialLine]:
    return [MaterialLine.from_model(r) for r in material_models(session, plan_id)]


def list_products(session, plan_id: int, *, is_intermediate: Optional[bool] = None) -> List[ProductLine]:
    q = session.query(PlanProductModel).filter(PlanProductModel.plan_id == int(plan_id))
    if is_intermediate is not None:
        q = q.filter(PlanProductModel.is_intermediate == bool(is_intermediate))
    rows = q.order_by(PlanProductModel.intermediate_depth.asc(), PlanProductModel.type_id.asc()).all()
    return [ProductLine.from_model(r) for r in rows]


def clear_ledger(session, plan_id: int) -> None:
    for model in (PlanMaterialModel, PlanProductModel):
        session.query(model).filter(model.plan_id == int(plan_id)).delete(synchronize_session="fetch")
    session.flush()


def insert_materials(session, plan_id: int, rows: Iterable[Dict[str, Any]]) -> int:
    count = 0
    for row in rows:
        session.add(PlanMaterialModel(plan_id=int(plan_id), **row))
        count += 1
    session.flush()
    return count


def insert_products(session, plan_id: int, rows: Iterable[Dict[str, Any]]) -> int:
    count = 0
    for row in rows:
        session.add(PlanProductModel(plan_id=int(plan_id), **row))
        count += 1
    session.flush()
    return count


def log_acquisition(
    session,
    plan_id: int,
    type_id: int,
    *,
    action: str,
    quantity_before: int,
    quantity_after: int,
    acquisition_method: Optional[str] = None,
    custom_price: Optional[float] = None,
    note: Optional[str] = None,
    performed_by: str = "user",
) -> None:
    session.add(
        PlanAcquisitionLogModel(
            plan_id=int(plan_id),
            type_id=int(type_id),
            action=action,
            quantity_before=int(quantity_before),
            quantity_after=int(quantity_after),
            acquisition_method=acquisition_method,
            custom_price=custom_price,
            note=note,
            performed_by=performed_by,
            created_at=datetime.now(),
        )
    )


def list_acquisition_log(
    session,
    plan_id: int,
    type_id: Optional[int] = None,
    limit: int = 100,
) -> List[AcquisitionLogEntry]:
    q = session.query(PlanAcquisitionLogModel).filter(PlanAcquisitionLogModel.plan_id == int(plan_id))
    if type_id is not None:
        q = q.filter(PlanAcquisitionLogModel.type_id == int(type_id))
    rows = q.order_by(PlanAcquisitionLogModel.id.desc()).limit(max(1, int(limit))).all()
    return [AcquisitionLogEntry.from_model(r) for r in rows]
