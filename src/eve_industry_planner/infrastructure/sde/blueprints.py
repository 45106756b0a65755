from __future__ import annotations

import logging
from typing import Any, Iterable

import yaml

from eve_industry_planner.db_models import Blueprints


def _type_quantity_rows(rows: Any) -> list[dict]:
    out: list[dict] = []
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        try:
            type_id = int(row["typeID"])
            quantity = int(row.get("quantity") or 0)
        except (KeyError, TypeError, ValueError):
            continue
        out.append({"type_id": type_id, "quantity": quantity})
    return out


INDUSTRY_ACTIVITIES = ("manufacturing", "reaction")


def _activity_data(activity: dict) -> dict:
    return {
        "time": activity.get("time"),
        "materials": _type_quantity_rows(activity.get("materials")),
        "products": _type_quantity_rows(activity.get("products")),
    }


def get_blueprint_industry_data(
    session,
    blueprint_type_ids: Iterable[int] | None = None,
) -> dict[int, dict]:
    """Return manufacturing and reaction materials/products for blueprints, keyed by blueprint typeID.

    Reaction formulas carry a `reaction` activity instead of `manufacturing`.
    If `blueprint_type_ids` is provided, only those blueprint typeIDs are loaded.
    Blueprints with neither activity are skipped.
    """

    q = session.query(Blueprints)
    if blueprint_type_ids is not None:
        ids = list({int(i) for i in blueprint_type_ids if i is not None})
        if not ids:
            return {}
        q = q.filter(Blueprints.blueprintTypeID.in_(ids))

    result: dict[int, dict] = {}
    for bp in q.all():
        activities = bp.activities if isinstance(bp.activities, dict) else {}
        entry: dict[str, Any] = {
            "blueprint_type_id": int(bp.blueprintTypeID),
            "max_production_limit": int(bp.maxProductionLimit or 0),
        }
        for name in INDUSTRY_ACTIVITIES:
            if isinstance(activities.get(name), dict):
                entry[name] = _activity_data(activities[name])
        if not any(name in entry for name in INDUSTRY_ACTIVITIES):
            continue
        result[int(bp.blueprintTypeID)] = entry
    return result


def load_yaml(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def import_blueprints_yaml(session, path: str) -> int:
    """Replace the SDE blueprint table with the contents of an SDE `blueprints.yaml` file."""

    logging.info("Loading %s ...", path)
    data = load_yaml(path) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a blueprint mapping")

    session.query(Blueprints).delete(synchronize_session="fetch")
    count = 0
    for key, bp in data.items():
        if not isinstance(bp, dict):
            continue
        try:
            blueprint_type_id = int(bp.get("blueprintTypeID") or key)
        except (TypeError, ValueError):
            continue
        activities = bp.get("activities") if isinstance(bp.get("activities"), dict) else {}
        session.add(
            Blueprints(
                blueprintTypeID=blueprint_type_id,
                maxProductionLimit=int(bp.get("maxProductionLimit") or 0),
                activities=activities,
            )
        )
        count += 1
    session.flush()
    logging.info("Imported %s blueprints from %s", count, path)
    return count
