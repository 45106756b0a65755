from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from eve_industry_planner.domain.plan import ACTIVITY_MANUFACTURING, ACTIVITY_REACTION


@dataclass(frozen=True)
class IntermediateMaterial:
    type_id: int
    quantity: int
    blueprint_type_id: int
    activity: str = ACTIVITY_MANUFACTURING


@dataclass(frozen=True)
class ClassifiedMaterials:
    raw: Dict[int, int] = field(default_factory=dict)
    intermediates: List[IntermediateMaterial] = field(default_factory=list)


def classify_materials(
    materials: Mapping[int, int],
    producing_recipe_for: Callable[[int], Optional[int]],
    producing_reaction_for: Optional[Callable[[int], Optional[int]]] = None,
) -> ClassifiedMaterials:
    """Split a material map into raw materials and materials that have a producing recipe.

    A manufacturing recipe wins over a reaction formula for the same material.
    Reactions are only considered when `producing_reaction_for` is given.
    Materials with a non-positive quantity are dropped. Intermediates come back
    ordered by type id so callers walk them deterministically.
    """

    raw: Dict[int, int] = {}
    intermediates: List[IntermediateMaterial] = []
    for type_id in sorted(materials):
        qty = int(materials[type_id] or 0)
        if qty <= 0:
            continue
        activity = ACTIVITY_MANUFACTURING
        blueprint_type_id = producing_recipe_for(int(type_id))
        if blueprint_type_id is None and producing_reaction_for is not None:
            activity = ACTIVITY_REACTION
            blueprint_type_id = producing_reaction_for(int(type_id))
        if blueprint_type_id is None:
            raw[int(type_id)] = raw.get(int(type_id), 0) + qty
        else:
            intermediates.append(
                IntermediateMaterial(
                    type_id=int(type_id), quantity=qty, blueprint_type_id=int(blueprint_type_id), activity=activity
                )
            )
    return ClassifiedMaterials(raw=raw, intermediates=intermediates)
