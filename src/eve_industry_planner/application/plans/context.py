from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from eve_industry_planner.application.plans.collaborators import MarketSettings, OwnedRecipeLookup, RecipeExpander, RecipeIndex
from eve_industry_planner.application.plans.material_classifier import ClassifiedMaterials, classify_materials
from eve_industry_planner.domain.plan import ACTIVITY_MANUFACTURING, ACTIVITY_REACTION
from eve_industry_planner.domain.plan_tree import PlanTree


MAX_DEPTH = 10


@dataclass
class PlanContext:
    """Everything one engine pass over a plan needs, passed explicitly through the call graph."""

    plan_id: int
    character_id: int
    tree: PlanTree
    recipes: RecipeExpander
    recipe_index: RecipeIndex
    owned_recipes: OwnedRecipeLookup
    max_depth: int = MAX_DEPTH
    # Reaction products become reaction nodes instead of raw materials.
    reactions_enabled: bool = False
    # Global market settings with the plan's overrides applied.
    market: Optional[MarketSettings] = None
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    _recipe_for_type: Dict[int, Optional[int]] = field(default_factory=dict, repr=False)
    _reaction_for_type: Dict[int, Optional[int]] = field(default_factory=dict, repr=False)
    _yield_for_recipe: Dict[int, int] = field(default_factory=dict, repr=False)
    _warned: set[Tuple[str, Any]] = field(default_factory=set, repr=False)

    def producing_recipe_for(self, type_id: int) -> Optional[int]:
        tid = int(type_id)
        if tid not in self._recipe_for_type:
            self._recipe_for_type[tid] = self.recipe_index.producing_recipe_for(tid)
        return self._recipe_for_type[tid]

    def producing_reaction_for(self, type_id: int) -> Optional[int]:
        tid = int(type_id)
        if tid not in self._reaction_for_type:
            self._reaction_for_type[tid] = self.recipe_index.producing_reaction_for(tid)
        return self._reaction_for_type[tid]

    def classify(self, materials: Mapping[int, int]) -> ClassifiedMaterials:
        reactions = self.producing_reaction_for if self.reactions_enabled else None
        return classify_materials(materials, self.producing_recipe_for, reactions)

    def yield_per_run(self, recipe_id: int) -> int:
        rid = int(recipe_id)
        if rid not in self._yield_for_recipe:
            self._yield_for_recipe[rid] = max(1, int(self.recipe_index.product_quantity_per_run(rid) or 1))
        return self._yield_for_recipe[rid]

    def default_me(self, recipe_id: int, activity: str = ACTIVITY_MANUFACTURING) -> int:
        if activity == ACTIVITY_REACTION:
            return 0
        me = self.owned_recipes.default_efficiency_for(self.character_id, int(recipe_id))
        return int(me) if me is not None else 0

    def warn(self, code: str, message: str, *, key: Any = None, **data: Any) -> None:
        # One warning per (code, key) per pass.
        marker = (code, key)
        if marker in self._warned:
            return
        self._warned.add(marker)
        self.warnings.append({"code": code, "message": message, **data})
