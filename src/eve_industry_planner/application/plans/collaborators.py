from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Protocol

from eve_industry_planner.domain.plan import PlanSettings


@dataclass(frozen=True)
class RecipeProduct:
    type_id: int
    quantity_per_run: int


@dataclass(frozen=True)
class RecipeExpansion:
    """Component-level requirements of one recipe instance.

    `materials` are totals for the requested run count, not per run.
    """

    materials: Dict[int, int] = field(default_factory=dict)
    product: Optional[RecipeProduct] = None


class RecipeExpander(Protocol):
    def expand_recipe(
        self,
        recipe_id: int,
        runs: int,
        me_level: int,
        character_id: int,
        facility_snapshot: Optional[Dict[str, Any]],
    ) -> RecipeExpansion: ...


class RecipeIndex(Protocol):
    def producing_recipe_for(self, material_type_id: int) -> Optional[int]: ...

    def producing_reaction_for(self, material_type_id: int) -> Optional[int]: ...

    def activity_of(self, recipe_id: int) -> str: ...

    def product_quantity_per_run(self, recipe_id: int) -> int: ...


class OwnedRecipeLookup(Protocol):
    def default_efficiency_for(self, character_id: int, recipe_id: int) -> Optional[int]: ...


class PriceEstimator(Protocol):
    def estimate_price(
        self,
        type_id: int,
        region_id: int,
        location_id: Optional[int],
        price_kind: str,
        quantity: int,
    ) -> float: ...


@dataclass(frozen=True)
class MarketSettings:
    input_region_id: int
    input_location_id: Optional[int]
    input_price_kind: str
    output_region_id: int
    output_location_id: Optional[int]
    output_price_kind: str

    def overridden_by(self, settings: Optional[PlanSettings]) -> "MarketSettings":
        """These settings with every non-null market field of `settings` applied on top."""

        if settings is None:
            return self
        overrides = {
            name: getattr(settings, name)
            for name in (
                "input_region_id",
                "input_location_id",
                "input_price_kind",
                "output_region_id",
                "output_location_id",
                "output_price_kind",
            )
            if getattr(settings, name) is not None
        }
        return replace(self, **overrides) if overrides else self
