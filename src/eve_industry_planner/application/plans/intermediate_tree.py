"""Structural maintenance of a plan's intermediate production tree.

This module is the only place that adds, re-sizes or prunes intermediate nodes.
It exposes three entry points:

- `sync`: make sure every producible input of an expanding node has a child node
  with a current run count.
- `expand`: resolve one intermediate (and, per its mode, its descendants) into
  raw material totals plus the intermediate products made along the way.
- `cleanup`: drop intermediates whose parent is gone or no longer expands.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from eve_industry_planner.application.plans.context import PlanContext
from eve_industry_planner.application.plans.material_classifier import IntermediateMaterial
from eve_industry_planner.domain.plan import ACTIVITY_MANUFACTURING, MODE_RAW_MATERIALS, expands
from eve_industry_planner.domain.plan_tree import PlanNode, PlanTree


logger = logging.getLogger(__name__)


def _ceil_div(a: int, b: int) -> int:
    if b <= 0:
        return 0
    return int(math.ceil(float(a) / float(b)))


def required_runs(quantity: int, lines: int, yield_per_run: int) -> int:
    """Runs of a producing recipe required to cover `quantity` on every line."""

    return _ceil_div(int(quantity) * max(1, int(lines)), max(1, int(yield_per_run)))


@dataclass(frozen=True)
class IntermediateProduct:
    type_id: int
    quantity: int
    depth: int


@dataclass
class ExpansionResult:
    materials: Dict[int, int] = field(default_factory=dict)
    intermediate_products: List[IntermediateProduct] = field(default_factory=list)
    # Set when the depth limit stopped the expansion before it produced anything.
    truncated: bool = False

    def add_materials(self, materials: Mapping[int, int], multiplier: int = 1) -> None:
        for type_id, qty in materials.items():
            amount = int(qty) * int(multiplier)
            if amount <= 0:
                continue
            self.materials[int(type_id)] = self.materials.get(int(type_id), 0) + amount

    def merge(self, other: "ExpansionResult") -> "ExpansionResult":
        self.add_materials(other.materials)
        self.intermediate_products.extend(other.intermediate_products)
        return self

    def fold(self, material: IntermediateMaterial, child: "ExpansionResult", *, lines: int = 1) -> None:
        """Replace `material` by its expansion, or keep it as-is when the expansion was cut off."""

        if child.truncated:
            self.add_materials({material.type_id: material.quantity}, multiplier=lines)
        else:
            self.merge(child)


def _depth_limit_reached(ctx: PlanContext, blueprint_type_id: int, depth: int, where: str) -> bool:
    if depth < ctx.max_depth:
        return False
    logger.warning(
        "Plan %s: max intermediate depth %s reached in %s for blueprint %s",
        ctx.plan_id,
        ctx.max_depth,
        where,
        blueprint_type_id,
    )
    ctx.warn(
        "depth_limit_reached",
        f"Intermediate chain for blueprint {blueprint_type_id} exceeds depth {ctx.max_depth}; "
        "deeper materials are listed unexpanded.",
        key=int(blueprint_type_id),
        blueprint_type_id=int(blueprint_type_id),
        max_depth=ctx.max_depth,
    )
    return True


def sync(ctx: PlanContext, slot: int, depth: int = 0) -> List[int]:
    """Create or re-size the child nodes of `slot`, recursively. Returns the touched slots."""

    node = ctx.tree.node(slot)
    if _depth_limit_reached(ctx, node.blueprint_type_id, depth, "sync"):
        return []
    if not expands(node.expansion_mode):
        return []

    expansion = ctx.recipes.expand_recipe(
        node.blueprint_type_id, node.runs, node.me_level, ctx.character_id, node.facility_snapshot
    )
    classified = ctx.classify(expansion.materials)

    touched: List[int] = []
    for material in classified.intermediates:
        runs = required_runs(material.quantity, node.lines, ctx.yield_per_run(material.blueprint_type_id))
        child = ctx.tree.find_child(slot, material.blueprint_type_id, material.type_id)
        if child is None:
            child = ctx.tree.add_intermediate(
                slot,
                blueprint_type_id=material.blueprint_type_id,
                material_type_id=material.type_id,
                runs=runs,
                me_level=ctx.default_me(material.blueprint_type_id, material.activity),
                activity=material.activity,
            )
            logger.debug(
                "Plan %s: added intermediate blueprint %s for material %s (%s runs, depth %s)",
                ctx.plan_id,
                material.blueprint_type_id,
                material.type_id,
                runs,
                depth + 1,
            )
        elif ctx.tree.set_runs(child.slot, runs):
            logger.debug(
                "Plan %s: intermediate blueprint %s now needs %s runs", ctx.plan_id, child.blueprint_type_id, runs
            )
        touched.append(child.slot)
        touched.extend(sync(ctx, child.slot, depth + 1))
    return touched


def expand(
    ctx: PlanContext,
    recipe_id: int,
    runs_needed: int,
    config: Optional[PlanNode],
    fallback_facility: Optional[Dict[str, Any]],
    parent_slot: Optional[int],
    depth: int = 1,
    activity: str = ACTIVITY_MANUFACTURING,
) -> ExpansionResult:
    """Resolve `runs_needed` runs of an intermediate recipe.

    `config` is the stored node for this intermediate, when one exists; it decides
    efficiency, facility and expansion mode. Without it the owned blueprint ME (or 0),
    `fallback_facility` and `raw_materials` are used. Sub-intermediates look up their
    own node among the children of `config` only.
    """

    if _depth_limit_reached(ctx, recipe_id, depth, "expand"):
        return ExpansionResult(truncated=True)

    if config is not None:
        me_level = int(config.me_level)
        facility = config.facility_snapshot if config.facility_snapshot is not None else fallback_facility
        mode = config.expansion_mode
    else:
        me_level = ctx.default_me(recipe_id, activity)
        facility = fallback_facility
        mode = MODE_RAW_MATERIALS

    expansion = ctx.recipes.expand_recipe(int(recipe_id), int(runs_needed), me_level, ctx.character_id, facility)

    result = ExpansionResult()
    if expansion.product is not None:
        result.intermediate_products.append(
            IntermediateProduct(
                type_id=int(expansion.product.type_id),
                quantity=int(expansion.product.quantity_per_run) * int(runs_needed),
                depth=int(depth),
            )
        )

    if not expands(mode):
        result.add_materials(expansion.materials)
        return result

    classified = ctx.classify(expansion.materials)
    result.add_materials(classified.raw)
    own_slot = config.slot if config is not None else None
    for material in classified.intermediates:
        child = expand_material(ctx, own_slot, material, lines=1, fallback_facility=facility, depth=depth + 1)
        result.fold(material, child)

    logger.debug(
        "Plan %s: expanded blueprint %s x%s under slot %s at depth %s",
        ctx.plan_id,
        recipe_id,
        runs_needed,
        parent_slot,
        depth,
    )
    return result


def expand_material(
    ctx: PlanContext,
    parent_slot: Optional[int],
    material: IntermediateMaterial,
    *,
    lines: int,
    fallback_facility: Optional[Dict[str, Any]],
    depth: int,
) -> ExpansionResult:
    """Expand one intermediate material required by the node in `parent_slot`."""

    config = None
    if parent_slot is not None:
        config = ctx.tree.find_child(parent_slot, material.blueprint_type_id, material.type_id)
    runs = required_runs(material.quantity, lines, ctx.yield_per_run(material.blueprint_type_id))
    return expand(
        ctx, material.blueprint_type_id, runs, config, fallback_facility, parent_slot, depth, activity=material.activity
    )


def cleanup(tree: PlanTree, *, reactions_enabled: bool = True) -> List[PlanNode]:
    """Remove orphaned intermediates until none are left.

    A node is orphaned when its parent no longer exists or its parent is in
    `components` mode. Reaction nodes are orphaned while reactions are disabled
    for the plan. Removing a node can orphan its own children, so this
    repeats until a pass removes nothing.
    """

    removed: List[PlanNode] = []
    while True:
        orphans = [n for n in tree.intermediates() if tree.is_orphan(n.slot, reactions_enabled=reactions_enabled)]
        if not orphans:
            break
        for node in orphans:
            removed.append(tree.remove(node.slot))
    if removed:
        logger.info("Plan %s: removed %s orphaned intermediate(s)", tree.plan_id, len(removed))
    return removed
