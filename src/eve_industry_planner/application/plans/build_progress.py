"""Build-progress reconciliation.

The manufactured portion of every material line is recomputed from scratch on
each pass from the built runs of the plan's intermediate and reaction nodes.
It is never patched incrementally.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from eve_industry_planner.application.errors import bad_request
from eve_industry_planner.application.plans.acquisitions import refresh_effective_method
from eve_industry_planner.application.plans.context import PlanContext
from eve_industry_planner.application.plans.intermediate_tree import required_runs
from eve_industry_planner.domain.plan import expands
from eve_industry_planner.domain.plan_tree import PlanNode
from eve_industry_planner.infrastructure.persistence import plan_ledger_repo


logger = logging.getLogger(__name__)


def validate_built_runs(entry: Any, built_runs: Any) -> int:
    if not bool(entry.is_intermediate):
        raise bad_request("Build progress can only be recorded for intermediate entries", entry_id=entry.id)
    try:
        value = int(built_runs)
    except (TypeError, ValueError):
        raise bad_request("built_runs must be an integer", built_runs=built_runs)
    if value < 0 or value > int(entry.runs):
        raise bad_request(
            f"built_runs must be between 0 and {int(entry.runs)}",
            entry_id=entry.id,
            built_runs=value,
            runs=int(entry.runs),
        )
    return value


def _effective_built_runs(ctx: PlanContext, node: PlanNode, consumed_by_parent: int) -> int:
    """Built runs of `node`, raised to what its parent's own built runs already consumed."""

    implied = required_runs(consumed_by_parent, 1, ctx.yield_per_run(node.blueprint_type_id)) if consumed_by_parent else 0
    return min(int(node.runs), max(int(node.built_runs), implied))


def _collect_below(
    ctx: PlanContext,
    node: PlanNode,
    built_runs: int,
    facility: Optional[Dict[str, Any]],
    depth: int,
    totals: Dict[int, int],
) -> None:
    """Add what `built_runs` runs of `node` consumed, then walk its children."""

    if depth >= ctx.max_depth:
        return
    consumed: Dict[int, int] = {}
    if built_runs > 0:
        expansion = ctx.recipes.expand_recipe(
            node.blueprint_type_id, built_runs, node.me_level, ctx.character_id, facility
        )
        classified = ctx.classify(expansion.materials)
        for type_id, qty in classified.raw.items():
            totals[type_id] = totals.get(type_id, 0) + int(qty)
        for material in classified.intermediates:
            child = ctx.tree.find_child(node.slot, material.blueprint_type_id, material.type_id)
            if child is None or depth + 1 >= ctx.max_depth:
                # Listed on the ledger as a material in its own right.
                totals[material.type_id] = totals.get(material.type_id, 0) + int(material.quantity)
            else:
                consumed[child.slot] = int(material.quantity)

    for child in ctx.tree.children_of(node.slot):
        child_built = _effective_built_runs(ctx, child, consumed.get(child.slot, 0))
        child_facility = child.facility_snapshot if child.facility_snapshot is not None else facility
        _collect_below(ctx, child, child_built, child_facility, depth + 1, totals)


def collect_manufactured_materials(ctx: PlanContext) -> Dict[int, int]:
    """Sum the materials consumed by the built runs of every intermediate in the plan.

    The walk is top-down. A child's built runs count as at least what its
    parent's built runs consumed, so a child marked built under a built parent
    is never counted twice, whether the parent is partly or fully built.
    """

    totals: Dict[int, int] = {}
    for node in ctx.tree.top_level():
        if not expands(node.expansion_mode):
            continue
        for child in ctx.tree.children_of(node.slot):
            facility = child.facility_snapshot if child.facility_snapshot is not None else node.facility_snapshot
            _collect_below(ctx, child, _effective_built_runs(ctx, child, 0), facility, 1, totals)
    return totals


def apply_manufactured_materials(session, plan_id: int, manufactured: Dict[int, int]) -> int:
    """Overwrite the manufactured portion of every material line. Returns the number of lines changed."""

    changed = 0
    for row in plan_ledger_repo.material_models(session, plan_id):
        before = int(row.manufactured_quantity or 0)
        after = int(manufactured.get(int(row.type_id), 0))
        row.manufactured_quantity = after
        refresh_effective_method(row)
        if before == after:
            continue
        changed += 1
        plan_ledger_repo.log_acquisition(
            session,
            plan_id,
            row.type_id,
            action="set",
            quantity_before=before,
            quantity_after=after,
            acquisition_method=row.acquisition_method,
            note="Manufactured quantity recalculated from build progress",
            performed_by="system",
        )
    session.flush()
    return changed


def reconcile(session, ctx: PlanContext) -> Dict[int, int]:
    manufactured = collect_manufactured_materials(ctx)
    changed = apply_manufactured_materials(session, ctx.plan_id, manufactured)
    if changed:
        logger.info("Plan %s: manufactured quantities changed on %s material(s)", ctx.plan_id, changed)
    return manufactured
