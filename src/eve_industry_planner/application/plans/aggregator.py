"""Plan-wide aggregation and the `recalculate` pass."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from eve_industry_planner.application.errors import ServiceError, not_found
from eve_industry_planner.application.plans import build_progress
from eve_industry_planner.application.plans.acquisitions import effective_acquisition
from eve_industry_planner.application.plans.collaborators import (
    MarketSettings,
    OwnedRecipeLookup,
    PriceEstimator,
    RecipeExpander,
    RecipeIndex,
)
from eve_industry_planner.application.plans.context import MAX_DEPTH, PlanContext
from eve_industry_planner.application.plans.intermediate_tree import ExpansionResult, cleanup, expand_material, sync
from eve_industry_planner.domain.plan import MaterialLine, ProductLine, expands
from eve_industry_planner.infrastructure.database_manager import transaction
from eve_industry_planner.infrastructure.persistence import plan_ledger_repo, plans_repo


logger = logging.getLogger(__name__)


@dataclass
class PlanTotals:
    materials: Dict[int, int] = field(default_factory=dict)
    final_products: Dict[int, int] = field(default_factory=dict)
    # type_id -> (quantity, minimum depth seen)
    intermediate_products: Dict[int, Tuple[int, int]] = field(default_factory=dict)


@dataclass
class RecalculationResult:
    plan_id: int
    success: bool = True
    material_count: int = 0
    product_count: int = 0
    touched_intermediates: int = 0
    removed_intermediates: int = 0
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "success": self.success,
            "material_count": self.material_count,
            "product_count": self.product_count,
            "touched_intermediates": self.touched_intermediates,
            "removed_intermediates": self.removed_intermediates,
            "warnings": list(self.warnings),
        }


def sync_plan(ctx: PlanContext) -> List[int]:
    """Structure phase: bring every expanding top-level entry's subtree up to date."""

    touched: List[int] = []
    for node in ctx.tree.top_level():
        if expands(node.expansion_mode):
            touched.extend(sync(ctx, node.slot, 0))
    return touched


def aggregate_plan(ctx: PlanContext) -> PlanTotals:
    """Aggregation phase: raw materials, final products and intermediate products of the whole plan."""

    totals = PlanTotals()
    expanded = ExpansionResult()

    for node in ctx.tree.top_level():
        lines = max(1, int(node.lines))
        expansion = ctx.recipes.expand_recipe(
            node.blueprint_type_id, node.runs, node.me_level, ctx.character_id, node.facility_snapshot
        )

        if expands(node.expansion_mode):
            classified = ctx.classify(expansion.materials)
            expanded.add_materials(classified.raw, multiplier=lines)
            for material in classified.intermediates:
                child = expand_material(
                    ctx, node.slot, material, lines=lines, fallback_facility=node.facility_snapshot, depth=1
                )
                expanded.fold(material, child, lines=lines)
        else:
            expanded.add_materials(expansion.materials, multiplier=lines)

        if expansion.product is not None:
            type_id = int(expansion.product.type_id)
            qty = int(expansion.product.quantity_per_run) * int(node.runs) * lines
            totals.final_products[type_id] = totals.final_products.get(type_id, 0) + qty

    totals.materials = dict(expanded.materials)
    for product in expanded.intermediate_products:
        qty, depth = totals.intermediate_products.get(product.type_id, (0, product.depth))
        totals.intermediate_products[product.type_id] = (qty + int(product.quantity), min(depth, int(product.depth)))
    return totals


class PlanRecalculator:
    """Runs the structure, aggregation and persistence phases for one plan."""

    def __init__(
        self,
        *,
        recipes: RecipeExpander,
        recipe_index: RecipeIndex,
        owned_recipes: OwnedRecipeLookup,
        pricing: Optional[PriceEstimator] = None,
        market: Optional[MarketSettings] = None,
        max_depth: int = MAX_DEPTH,
        price_workers: int = 4,
    ):
        self._recipes = recipes
        self._recipe_index = recipe_index
        self._owned_recipes = owned_recipes
        self._pricing = pricing
        self._market = market
        self._max_depth = max_depth
        self._price_workers = max(1, int(price_workers))

    def build_context(self, session, plan_id: int) -> PlanContext:
        plan = plans_repo.get_plan(session, plan_id)
        if plan is None:
            raise not_found("Manufacturing plan", plan_id)
        settings = plans_repo.get_plan_settings(session, plan.id)
        return PlanContext(
            plan_id=plan.id,
            character_id=plan.character_id,
            tree=plans_repo.load_tree(session, plan.id),
            recipes=self._recipes,
            recipe_index=self._recipe_index,
            owned_recipes=self._owned_recipes,
            max_depth=self._max_depth,
            reactions_enabled=settings.reactions_as_intermediates,
            market=self._market.overridden_by(settings) if self._market is not None else None,
        )

    # --- prices ---
    def _estimate_prices(
        self,
        quantities: Dict[int, int],
        *,
        region_id: int,
        location_id: Optional[int],
        price_kind: str,
    ) -> Dict[int, Optional[float]]:
        out: Dict[int, Optional[float]] = {int(t): None for t in quantities}
        if self._pricing is None or not quantities:
            return out

        def fetch_one(type_id: int, quantity: int) -> Tuple[int, Optional[float]]:
            try:
                return type_id, float(self._pricing.estimate_price(type_id, region_id, location_id, price_kind, quantity))
            except Exception as e:
                logger.warning("Price lookup failed for type %s: %s", type_id, e)
                return type_id, None

        with ThreadPoolExecutor(max_workers=self._price_workers) as executor:
            futures = [executor.submit(fetch_one, int(t), int(q)) for t, q in sorted(quantities.items())]
            for fut in as_completed(futures):
                type_id, price = fut.result()
                out[type_id] = price
        return out

    def _material_prices(self, market: Optional[MarketSettings], materials: Dict[int, int]) -> Dict[int, Optional[float]]:
        if market is None:
            return {int(t): None for t in materials}
        return self._estimate_prices(
            materials,
            region_id=market.input_region_id,
            location_id=market.input_location_id,
            price_kind=market.input_price_kind,
        )

    def _product_prices(self, market: Optional[MarketSettings], products: Dict[int, int]) -> Dict[int, Optional[float]]:
        if market is None:
            return {int(t): None for t in products}
        return self._estimate_prices(
            products,
            region_id=market.output_region_id,
            location_id=market.output_location_id,
            price_kind=market.output_price_kind,
        )

    # --- recalculate ---
    def recalculate(self, session, plan_id: int, *, refresh_prices: bool) -> RecalculationResult:
        """Rebuild the plan's ledgers in one transaction; any failure rolls all of it back."""

        try:
            with transaction(session):
                return self.run(session, plan_id, refresh_prices=refresh_prices)
        except ServiceError:
            raise
        except Exception as e:
            logger.exception("Plan %s: recalculation failed and was rolled back", plan_id)
            raise ServiceError(f"Failed to recalculate plan {plan_id}: {e}", status_code=500, data={"plan_id": plan_id})

    def run(self, session, plan_id: int, *, refresh_prices: bool) -> RecalculationResult:
        """Sync, aggregate, persist, clean up and reconcile build progress.

        Only flushes. The caller owns the transaction, so an entry write and the
        recalculation it triggers commit or roll back together.
        """

        ctx = self.build_context(session, plan_id)
        result = self._rebuild_ledgers(session, ctx, refresh_prices=refresh_prices)

        build_progress.reconcile(session, ctx)
        excess = [m for m in plan_ledger_repo.list_materials(session, ctx.plan_id) if m.excess_quantity > 0]
        if excess:
            result.warnings.append(
                {
                    "code": "excess_acquisitions",
                    "message": f"{len(excess)} material(s) have more acquired than the plan needs",
                    "materials": [
                        {"type_id": m.type_id, "quantity": m.quantity, "acquired": m.total_acquired, "excess": m.excess_quantity}
                        for m in excess
                    ],
                }
            )
        result.warnings = ctx.warnings + result.warnings
        logger.info(
            "Plan %s recalculated: %s materials, %s products, %s warning(s)",
            plan_id,
            result.material_count,
            result.product_count,
            len(result.warnings),
        )
        return result

    def _rebuild_ledgers(self, session, ctx: PlanContext, *, refresh_prices: bool) -> RecalculationResult:
        touched = sync_plan(ctx)
        totals = aggregate_plan(ctx)

        # Snapshot of what survives regeneration: prices, the manual portion and the last
        # manufactured figures, which the reconciler overwrites afterwards.
        old_materials: Dict[int, MaterialLine] = {m.type_id: m for m in plan_ledger_repo.list_materials(session, ctx.plan_id)}
        old_products: Dict[int, ProductLine] = {p.type_id: p for p in plan_ledger_repo.list_products(session, ctx.plan_id)}

        final_ids = set(totals.final_products)
        intermediate_quantities = {t: q for t, (q, _d) in totals.intermediate_products.items() if t not in final_ids}
        now = datetime.now()
        if refresh_prices:
            material_prices = self._material_prices(ctx.market, totals.materials)
            product_prices = self._product_prices(ctx.market, {**intermediate_quantities, **totals.final_products})
        else:
            material_prices = {t: m.base_price for t, m in old_materials.items()}
            product_prices = {t: p.base_price for t, p in old_products.items()}

        def _frozen_at(price: Optional[float], old: Any) -> Optional[datetime]:
            if refresh_prices:
                return now if price is not None else None
            return old.price_frozen_at if old is not None else None

        plan_ledger_repo.clear_ledger(session, ctx.plan_id)

        material_rows = []
        for type_id, qty in sorted(totals.materials.items()):
            old = old_materials.get(type_id)
            row: Dict[str, Any] = {
                "type_id": type_id,
                "quantity": int(qty),
                "base_price": material_prices.get(type_id),
                "price_frozen_at": _frozen_at(material_prices.get(type_id), old),
                "manufactured_quantity": old.manufactured_quantity if old is not None else 0,
            }
            if old is not None and old.manually_acquired_quantity > 0:
                row.update(
                    manually_acquired_quantity=old.manually_acquired_quantity,
                    manual_acquisition_method=old.manual_acquisition_method,
                    custom_price=old.custom_price,
                    acquisition_note=old.acquisition_note,
                    acquired_at=old.acquired_at,
                )
            elif old is not None and old.custom_price is not None:
                row["custom_price"] = old.custom_price
            row["acquisition_method"], row["system_note"] = effective_acquisition(
                row.get("manually_acquired_quantity", 0),
                row.get("manual_acquisition_method"),
                row["manufactured_quantity"],
            )
            material_rows.append(row)
        plan_ledger_repo.insert_materials(session, ctx.plan_id, material_rows)

        removed = [m for t, m in old_materials.items() if t not in totals.materials and m.manually_acquired_quantity > 0]
        for m in removed:
            plan_ledger_repo.log_acquisition(
                session,
                ctx.plan_id,
                m.type_id,
                action="remove",
                quantity_before=m.manually_acquired_quantity,
                quantity_after=0,
                acquisition_method=m.manual_acquisition_method,
                note="Material no longer required by the plan",
                performed_by="system",
            )
        if removed:
            ctx.warnings.append(
                {
                    "code": "removed_acquisitions",
                    "message": f"{len(removed)} acquired material(s) are no longer needed by the plan",
                    "materials": [
                        {"type_id": m.type_id, "quantity": m.manually_acquired_quantity, "method": m.manual_acquisition_method}
                        for m in removed
                    ],
                }
            )

        product_rows = []
        for type_id, qty in sorted(totals.final_products.items()):
            product_rows.append(
                {
                    "type_id": type_id,
                    "quantity": int(qty),
                    "base_price": product_prices.get(type_id),
                    "price_frozen_at": _frozen_at(product_prices.get(type_id), old_products.get(type_id)),
                    "is_intermediate": False,
                    "intermediate_depth": 0,
                }
            )
        for type_id, (qty, depth) in sorted(totals.intermediate_products.items()):
            if type_id in final_ids:
                continue
            product_rows.append(
                {
                    "type_id": type_id,
                    "quantity": int(qty),
                    "base_price": product_prices.get(type_id),
                    "price_frozen_at": _frozen_at(product_prices.get(type_id), old_products.get(type_id)),
                    "is_intermediate": True,
                    "intermediate_depth": int(depth),
                }
            )
        plan_ledger_repo.insert_products(session, ctx.plan_id, product_rows)

        removed_nodes = cleanup(ctx.tree, reactions_enabled=ctx.reactions_enabled)
        plans_repo.save_tree(session, ctx.tree)
        plans_repo.touch_plan(session, ctx.plan_id)

        return RecalculationResult(
            plan_id=ctx.plan_id,
            material_count=len(material_rows),
            product_count=len(product_rows),
            touched_intermediates=len(set(touched)),
            removed_intermediates=len(removed_nodes),
        )
