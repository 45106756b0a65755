from __future__ import annotations

from types import SimpleNamespace

import pytest

from eve_industry_planner.application.plans.aggregator import PlanRecalculator
from eve_industry_planner.application.plans.service import PlansService

from planner_testkit import MARKET, FakeOwnedBlueprints, FakePricing, FakeSessions, create_app_session, make_catalog


@pytest.fixture
def session():
    s = create_app_session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def pricing():
    return FakePricing()


@pytest.fixture
def recalculator(catalog, pricing):
    return PlanRecalculator(
        recipes=catalog,
        recipe_index=catalog,
        owned_recipes=FakeOwnedBlueprints(),
        pricing=pricing,
        market=MARKET,
    )


@pytest.fixture
def service(session, catalog, pricing):
    return PlansService(
        state=SimpleNamespace(),
        sessions=FakeSessions(app_session_factory=lambda: session),
        recipes=catalog,
        recipe_index=catalog,
        owned_recipes=FakeOwnedBlueprints(),
        pricing=pricing,
        market=MARKET,
    )
