from __future__ import annotations

from typing import Any, Callable, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from eve_industry_planner.application.errors import PriceUnavailableError
from eve_industry_planner.application.plans.collaborators import MarketSettings
from eve_industry_planner.db_models import BaseApp
from eve_industry_planner.infrastructure.recipe_calculator import BlueprintCatalog


CHARACTER_ID = 123

# Synthetic type ids. Only the recipe graph shape matters.
BP_A, PRODUCT_A = 1000, 100
BP_B, ITEM_B = 2000, 200
BP_C, ITEM_C = 3000, 300
BP_D, ITEM_D = 4000, 400
BP_E, PRODUCT_E = 5000, 500
BP_LOOP, ITEM_LOOP = 6000, 600
RAW_1, RAW_2, RAW_3 = 10, 20, 30
# Reaction formula making RAW_3 from moon material and fuel.
REACTION_F = 7000
MOON_1, FUEL = 40, 50

MARKET = MarketSettings(
    input_region_id=10000002,
    input_location_id=60003760,
    input_price_kind="sell",
    output_region_id=10000002,
    output_location_id=60003760,
    output_price_kind="sell",
)


def _bp(materials: dict[int, int], product: tuple[int, int]) -> dict[str, Any]:
    return {
        "manufacturing": {
            "time": 600,
            "materials": [{"type_id": t, "quantity": q} for t, q in materials.items()],
            "products": [{"type_id": product[0], "quantity": product[1]}],
        }
    }


def default_blueprints() -> dict[int, dict]:
    """A -> (5 B, 3 RAW_1); B (yields 2) -> (4 RAW_2, 1 C); C -> 2 RAW_3; D -> 1 RAW_2; E -> (2 B, 3 D).

    REACTION_F (yields 20 RAW_3) -> (100 MOON_1, 5 FUEL); only used when a plan enables reactions.
    """

    return {
        BP_A: _bp({ITEM_B: 5, RAW_1: 3}, (PRODUCT_A, 1)),
        BP_B: _bp({RAW_2: 4, ITEM_C: 1}, (ITEM_B, 2)),
        BP_C: _bp({RAW_3: 2}, (ITEM_C, 1)),
        BP_D: _bp({RAW_2: 1}, (ITEM_D, 1)),
        BP_E: _bp({ITEM_B: 2, ITEM_D: 3}, (PRODUCT_E, 1)),
        # Consumes its own product: a cycle in the recipe graph.
        BP_LOOP: _bp({ITEM_LOOP: 1, RAW_1: 1}, (ITEM_LOOP, 1)),
        REACTION_F: {
            "reaction": {
                "time": 3600,
                "materials": [{"type_id": MOON_1, "quantity": 100}, {"type_id": FUEL, "quantity": 5}],
                "products": [{"type_id": RAW_3, "quantity": 20}],
            }
        },
    }


def make_catalog(blueprints: Optional[dict[int, dict]] = None) -> BlueprintCatalog:
    return BlueprintCatalog(blueprints if blueprints is not None else default_blueprints())


class FakeOwnedBlueprints:
    def __init__(self, me_by_recipe: Optional[dict[int, int]] = None):
        self._me_by_recipe = dict(me_by_recipe or {})

    def default_efficiency_for(self, character_id: int, recipe_id: int) -> Optional[int]:
        return self._me_by_recipe.get(int(recipe_id))


class FakePricing:
    def __init__(self, prices: Optional[dict[int, float]] = None, failing: Optional[set[int]] = None):
        self._prices = dict(prices or {})
        self._failing = set(failing or ())
        self.calls: list[tuple[int, str]] = []

    def estimate_price(self, type_id: int, region_id: int, location_id: Optional[int], price_kind: str, quantity: int) -> float:
        self.calls.append((int(type_id), price_kind))
        if int(type_id) in self._failing:
            raise PriceUnavailableError(f"No orders for {type_id}")
        return float(self._prices.get(int(type_id), 1.0))


class FakeSessions:
    def __init__(self, *, app_session_factory: Callable[[], Any], sde_session_factory: Callable[[], Any] = object):
        self._app_session_factory = app_session_factory
        self._sde_session_factory = sde_session_factory

    def app_session(self) -> Any:
        return self._app_session_factory()

    def sde_session(self) -> Any:
        return self._sde_session_factory()


def create_app_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    BaseApp.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return Session()
