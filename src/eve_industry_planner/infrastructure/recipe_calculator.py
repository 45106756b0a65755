from __future__ import annotations

import logging
import math
import threading
from typing import Any, Optional

from eve_industry_planner.application.plans.collaborators import RecipeExpansion, RecipeProduct
from eve_industry_planner.domain.plan import ACTIVITY_MANUFACTURING, ACTIVITY_REACTION
from eve_industry_planner.infrastructure.sde.blueprints import get_blueprint_industry_data


logger = logging.getLogger(__name__)


def _safe_float(v: Any, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def facility_material_multiplier(facility_snapshot: Optional[dict[str, Any]]) -> float:
    """Material multiplier a facility applies after blueprint ME.

    Structures apply their hull bonus and rig bonus in series; stations apply none.
    """

    if not isinstance(facility_snapshot, dict):
        return 1.0
    if str(facility_snapshot.get("facility_type") or "").lower() != "structure":
        return 1.0
    hull = _safe_float(facility_snapshot.get("structure_me_bonus"))
    rig = _safe_float(facility_snapshot.get("structure_rig_material_bonus"))
    return (1.0 - hull / 100.0) * (1.0 - rig / 100.0)


def material_quantity(base_quantity: int, runs: int, me_level: int, facility_snapshot: Optional[dict[str, Any]] = None) -> int:
    """Quantity of one material for `runs` runs: max(runs, ceil(runs * base * (1 - ME/100) * facility))."""

    base = int(base_quantity)
    runs = int(runs)
    if base <= 0 or runs <= 0:
        return 0
    adjusted = runs * base * (1.0 - int(me_level) / 100.0) * facility_material_multiplier(facility_snapshot)
    # Round away float noise so e.g. 900.0000000001 does not become 901.
    return max(runs, int(math.ceil(round(adjusted, 6))))


# Athanor, Tatara
REACTION_STRUCTURE_TYPE_IDS = frozenset({35835, 35836})
REACTION_STRUCTURE_MATERIAL_MULTIPLIER = 0.98


def reaction_material_multiplier(facility_snapshot: Optional[dict[str, Any]]) -> float:
    """Material multiplier for reactions. Formulas have no ME; only the refinery hull and reaction rigs count.

    Rig bonuses are 10% stronger in null-sec and wormhole space.
    """

    if not isinstance(facility_snapshot, dict):
        return 1.0
    multiplier = 1.0
    try:
        structure_type_id = int(facility_snapshot.get("structure_type_id") or 0)
    except (TypeError, ValueError):
        structure_type_id = 0
    if structure_type_id in REACTION_STRUCTURE_TYPE_IDS:
        multiplier *= REACTION_STRUCTURE_MATERIAL_MULTIPLIER
    rig = _safe_float(facility_snapshot.get("reaction_rig_material_bonus"))
    if rig:
        if _safe_float(facility_snapshot.get("security_status"), 0.5) <= 0.0:
            rig *= 1.1
        multiplier *= 1.0 - rig / 100.0
    return multiplier


def reaction_material_quantity(base_quantity: int, runs: int, facility_snapshot: Optional[dict[str, Any]] = None) -> int:
    base = int(base_quantity)
    runs = int(runs)
    if base <= 0 or runs <= 0:
        return 0
    adjusted = runs * base * reaction_material_multiplier(facility_snapshot)
    return max(runs, int(math.ceil(round(adjusted, 6))))


def _index_blueprints_by_product(all_bp_data: dict[int, dict], activity: str = ACTIVITY_MANUFACTURING) -> dict[int, list[dict]]:
    """Return product_type_id -> blueprint descriptors for one activity, largest output per run first."""

    out: dict[int, list[dict]] = {}
    for bp_type_id, bp in (all_bp_data or {}).items():
        data = bp.get(activity) if isinstance(bp, dict) else None
        if not isinstance(data, dict):
            continue
        for prod in data.get("products") or []:
            qty = int(prod.get("quantity") or 0)
            if qty <= 0:
                continue
            out.setdefault(int(prod["type_id"]), []).append(
                {"blueprint_type_id": int(bp_type_id), "product_quantity_per_run": qty}
            )

    for descriptors in out.values():
        descriptors.sort(key=lambda d: (-int(d["product_quantity_per_run"]), int(d["blueprint_type_id"])))
    return out


class BlueprintCatalog:
    """Recipe expander and recipe-by-product index over SDE manufacturing and reaction data."""

    def __init__(self, blueprints: dict[int, dict]):
        self._blueprints = dict(blueprints or {})
        self._by_product = _index_blueprints_by_product(self._blueprints, ACTIVITY_MANUFACTURING)
        self._reactions_by_product = _index_blueprints_by_product(self._blueprints, ACTIVITY_REACTION)

    @classmethod
    def from_session(cls, sde_session) -> "BlueprintCatalog":
        data = get_blueprint_industry_data(sde_session)
        logger.info("Loaded industry data for %s blueprints and reaction formulas", len(data))
        return cls(data)

    def __len__(self) -> int:
        return len(self._blueprints)

    def _activity(self, recipe_id: int) -> tuple[str, dict]:
        bp = self._blueprints.get(int(recipe_id))
        if bp is None:
            raise KeyError(f"Unknown blueprint {recipe_id}")
        if ACTIVITY_MANUFACTURING not in bp and isinstance(bp.get(ACTIVITY_REACTION), dict):
            return ACTIVITY_REACTION, bp[ACTIVITY_REACTION]
        return ACTIVITY_MANUFACTURING, bp.get(ACTIVITY_MANUFACTURING) or {}

    def activity_of(self, recipe_id: int) -> str:
        return self._activity(recipe_id)[0]

    def expand_recipe(
        self,
        recipe_id: int,
        runs: int,
        me_level: int,
        character_id: int,
        facility_snapshot: Optional[dict[str, Any]],
    ) -> RecipeExpansion:
        activity, data = self._activity(recipe_id)
        materials: dict[int, int] = {}
        for mat in data.get("materials") or []:
            if activity == ACTIVITY_REACTION:
                qty = reaction_material_quantity(int(mat["quantity"]), runs, facility_snapshot)
            else:
                qty = material_quantity(int(mat["quantity"]), runs, me_level, facility_snapshot)
            if qty > 0:
                materials[int(mat["type_id"])] = materials.get(int(mat["type_id"]), 0) + qty

        products = data.get("products") or []
        product = None
        if products:
            product = RecipeProduct(type_id=int(products[0]["type_id"]), quantity_per_run=int(products[0]["quantity"]))
        return RecipeExpansion(materials=materials, product=product)

    def producing_recipe_for(self, material_type_id: int) -> Optional[int]:
        descriptors = self._by_product.get(int(material_type_id))
        return int(descriptors[0]["blueprint_type_id"]) if descriptors else None

    def producing_reaction_for(self, material_type_id: int) -> Optional[int]:
        descriptors = self._reactions_by_product.get(int(material_type_id))
        return int(descriptors[0]["blueprint_type_id"]) if descriptors else None

    def product_quantity_per_run(self, recipe_id: int) -> int:
        products = self._activity(recipe_id)[1].get("products") or []
        return int(products[0]["quantity"]) if products else 1


_CATALOG_LOCK = threading.Lock()


def get_catalog(state: Any, sde_session) -> BlueprintCatalog:
    """Return the catalog cached on the app state, loading it on first use."""

    with _CATALOG_LOCK:
        catalog = getattr(state, "blueprint_catalog", None)
        if catalog is None:
            catalog = BlueprintCatalog.from_session(sde_session)
            state.blueprint_catalog = catalog
        return catalog
