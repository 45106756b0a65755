from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from eve_industry_planner.application.errors import ServiceError
from eve_industry_planner.application.plans import build_progress
from eve_industry_planner.application.plans.service import PlanLocks, PlansService

from planner_testkit import (
    BP_A,
    BP_B,
    BP_C,
    CHARACTER_ID,
    FUEL,
    ITEM_B,
    MARKET,
    MOON_1,
    PRODUCT_A,
    RAW_1,
    RAW_2,
    RAW_3,
    FakeOwnedBlueprints,
    FakeSessions,
)


def _plan_with_a(service, runs: int = 10) -> tuple[int, int]:
    plan = service.create_plan(data={"character_id": CHARACTER_ID, "plan_name": "Frigates"})
    out = service.add_entry(plan_id=plan.id, data={"blueprint_type_id": BP_A, "runs": runs})
    return plan.id, out["entry"].id


def _materials(service, plan_id: int) -> dict[int, int]:
    return {m.type_id: m.quantity for m in service.list_materials(plan_id=plan_id)}


# --------------------------
# Plans
# --------------------------
def test_create_plan_requires_character(service) -> None:
    with pytest.raises(ServiceError) as exc:
        service.create_plan(data={"plan_name": "No owner"})
    assert exc.value.status_code == 400


def test_plan_crud(service) -> None:
    plan = service.create_plan(data={"character_id": CHARACTER_ID, "plan_name": "Frigates"})
    assert plan.status == "active"
    assert service.get_plan(plan_id=plan.id).plan_name == "Frigates"

    service.create_plan(data={"character_id": CHARACTER_ID, "status": "archived"})
    service.create_plan(data={"character_id": 999})
    assert len(service.list_plans(character_id=CHARACTER_ID)) == 2
    assert [p.id for p in service.list_plans(character_id=CHARACTER_ID, status="active")] == [plan.id]

    done = service.update_plan(plan_id=plan.id, data={"status": "completed", "description": "shipped"})
    assert done.status == "completed"
    assert done.completed_at is not None
    assert done.description == "shipped"

    reopened = service.update_plan(plan_id=plan.id, data={"status": "active"})
    assert reopened.completed_at is None

    with pytest.raises(ServiceError):
        service.update_plan(plan_id=plan.id, data={"status": "paused"})


def test_unknown_plan_is_not_found(service) -> None:
    for call in (
        lambda: service.get_plan(plan_id=404),
        lambda: service.list_materials(plan_id=404),
        lambda: service.delete_plan(plan_id=404),
        lambda: service.add_entry(plan_id=404, data={"blueprint_type_id": BP_A, "runs": 1}),
    ):
        with pytest.raises(ServiceError) as exc:
            call()
        assert exc.value.status_code == 404


def test_delete_plan_removes_everything(service) -> None:
    plan_id, _entry_id = _plan_with_a(service)
    service.mark_material_acquired(plan_id=plan_id, type_id=RAW_1, data={"quantity": 5})

    service.delete_plan(plan_id=plan_id)

    with pytest.raises(ServiceError):
        service.get_plan(plan_id=plan_id)
    assert service.list_plans(character_id=CHARACTER_ID) == []


def test_plan_summary(service) -> None:
    plan_id, _entry_id = _plan_with_a(service)

    summary = service.plan_summary(plan_id=plan_id)

    assert summary["entry_count"] == 1
    assert summary["intermediate_count"] == 2
    assert summary["material_count"] == 3
    assert summary["final_product_count"] == 1
    assert summary["intermediate_product_count"] == 2
    # Every price is 1.0: 30 + 100 + 50 units in, 10 units out.
    assert summary["material_cost"] == 180.0
    assert summary["product_value"] == 10.0
    assert summary["profit"] == -170.0
    assert summary["roi_percent"] == -94.44
    assert summary["missing_prices"] == 0

    service.mark_material_acquired(plan_id=plan_id, type_id=RAW_1, data={"quantity": 10, "custom_price": 0.5})
    summary = service.plan_summary(plan_id=plan_id)
    assert summary["material_cost"] == 175.0


# --------------------------
# Entries
# --------------------------
def test_add_entry_builds_tree_and_ledgers(service, pricing) -> None:
    plan_id, entry_id = _plan_with_a(service)

    entries = service.list_entries(plan_id=plan_id)
    assert [e.blueprint_type_id for e in entries if not e.is_intermediate] == [BP_A]
    assert {e.blueprint_type_id for e in service.list_intermediates(plan_id=plan_id)} == {BP_B, BP_C}
    assert _materials(service, plan_id) == {RAW_1: 30, RAW_2: 100, RAW_3: 50}
    assert [p.type_id for p in service.list_products(plan_id=plan_id, is_intermediate=False)] == [PRODUCT_A]
    # Adding fetches fresh prices.
    assert pricing.calls


def test_add_entry_validation(service) -> None:
    plan = service.create_plan(data={"character_id": CHARACTER_ID})
    bad = [
        {"runs": 1},
        {"blueprint_type_id": BP_A},
        {"blueprint_type_id": BP_A, "runs": 0},
        {"blueprint_type_id": BP_A, "runs": 1, "me_level": 11},
        {"blueprint_type_id": BP_A, "runs": 1, "te_level": 21},
        {"blueprint_type_id": BP_A, "runs": 1, "expansion_mode": "everything"},
        {"blueprint_type_id": BP_A, "runs": 1, "facility_snapshot": "citadel"},
        # No manufacturing recipe.
        {"blueprint_type_id": 424242, "runs": 1},
    ]
    for data in bad:
        with pytest.raises(ServiceError) as exc:
            service.add_entry(plan_id=plan.id, data=data)
        assert exc.value.status_code == 400, data
    assert service.list_entries(plan_id=plan.id) == []


def test_update_entry_resizes_and_does_not_refresh_prices(service, pricing) -> None:
    plan_id, entry_id = _plan_with_a(service)
    pricing.calls.clear()

    out = service.update_entry(entry_id=entry_id, data={"runs": 20, "me_level": 10})

    assert out["entry"].runs == 20
    assert out["recalculation"].success is True
    assert _materials(service, plan_id)[RAW_1] == 54
    b = next(e for e in service.list_intermediates(plan_id=plan_id) if e.blueprint_type_id == BP_B)
    # ME 10 on A: ceil(5 * 20 * 0.9) = 90 B needed, 45 runs.
    assert b.runs == 45
    assert pricing.calls == []


def test_intermediate_runs_cannot_be_edited(service) -> None:
    plan_id, _entry_id = _plan_with_a(service)
    b = next(e for e in service.list_intermediates(plan_id=plan_id) if e.blueprint_type_id == BP_B)

    with pytest.raises(ServiceError) as exc:
        service.update_entry(entry_id=b.id, data={"runs": 3})
    assert exc.value.status_code == 400

    service.update_entry(entry_id=b.id, data={"me_level": 10})
    assert _materials(service, plan_id)[RAW_2] == 90


def test_update_entry_requires_fields(service) -> None:
    _plan_id, entry_id = _plan_with_a(service)
    with pytest.raises(ServiceError) as exc:
        service.update_entry(entry_id=entry_id, data={"blueprint_type_id": BP_B})
    assert exc.value.status_code == 400


def test_switching_to_components_removes_intermediates(service) -> None:
    plan_id, entry_id = _plan_with_a(service)

    out = service.update_entry(entry_id=entry_id, data={"expansion_mode": "components"})

    assert out["recalculation"].removed_intermediates == 2
    assert service.list_intermediates(plan_id=plan_id) == []
    assert _materials(service, plan_id) == {ITEM_B: 50, RAW_1: 30}

    service.update_entry(entry_id=entry_id, data={"expansion_mode": "raw_materials"})
    assert _materials(service, plan_id) == {RAW_1: 30, RAW_2: 100, RAW_3: 50}


def test_bulk_update_is_all_or_nothing(service) -> None:
    plan_id, entry_id = _plan_with_a(service)
    other = service.add_entry(plan_id=plan_id, data={"blueprint_type_id": BP_C, "runs": 5})["entry"]

    with pytest.raises(ServiceError):
        service.bulk_update_entries(
            plan_id=plan_id,
            updates=[
                {"entry_id": entry_id, "updates": {"runs": 20}},
                {"entry_id": other.id, "updates": {"me_level": 99}},
            ],
        )
    assert service.get_plan(plan_id=plan_id)
    assert next(e for e in service.list_entries(plan_id=plan_id) if e.id == entry_id).runs == 10

    result = service.bulk_update_entries(
        plan_id=plan_id,
        updates=[
            {"entry_id": entry_id, "updates": {"runs": 20}},
            {"entry_id": other.id, "updates": {"runs": 10}},
        ],
    )
    assert result.success is True
    # 50 B runs through A plus the standalone C entry.
    assert _materials(service, plan_id)[RAW_3] == 2 * 50 + 2 * 10


def test_bulk_update_rejects_foreign_entries(service) -> None:
    plan_id, _entry_id = _plan_with_a(service)
    _other_plan, other_entry = _plan_with_a(service)

    with pytest.raises(ServiceError) as exc:
        service.bulk_update_entries(plan_id=plan_id, updates=[{"entry_id": other_entry, "updates": {"runs": 2}}])
    assert exc.value.status_code == 400
    assert service.bulk_update_entries(plan_id=plan_id, updates=[]) is None


def test_remove_entry_drops_its_subtree(service) -> None:
    plan_id, entry_id = _plan_with_a(service)
    service.add_entry(plan_id=plan_id, data={"blueprint_type_id": BP_C, "runs": 5})

    result = service.remove_entry(entry_id=entry_id)

    assert result.success is True
    assert service.list_intermediates(plan_id=plan_id) == []
    assert _materials(service, plan_id) == {RAW_3: 10}

    with pytest.raises(ServiceError) as exc:
        service.remove_entry(entry_id=entry_id)
    assert exc.value.status_code == 404


class _SwitchableRecipes:
    """Delegates to the catalog until `fail` is switched on."""

    def __init__(self, catalog):
        self._catalog = catalog
        self.fail = False

    def expand_recipe(self, *args, **kwargs):
        if self.fail:
            raise RuntimeError("recipe data unavailable")
        return self._catalog.expand_recipe(*args, **kwargs)


def test_failed_recalculation_rolls_back_entry_update(session, catalog, pricing) -> None:
    recipes = _SwitchableRecipes(catalog)
    service = PlansService(
        state=SimpleNamespace(),
        sessions=FakeSessions(app_session_factory=lambda: session),
        recipes=recipes,
        recipe_index=catalog,
        owned_recipes=FakeOwnedBlueprints(),
        pricing=pricing,
        market=MARKET,
    )
    plan_id, entry_id = _plan_with_a(service)
    materials = [m.to_dict() for m in service.list_materials(plan_id=plan_id)]
    entries = [e.to_dict() for e in service.list_entries(plan_id=plan_id)]

    recipes.fail = True
    with pytest.raises(ServiceError) as exc:
        service.update_entry(entry_id=entry_id, data={"runs": 20})

    assert exc.value.status_code == 500
    assert [e.to_dict() for e in service.list_entries(plan_id=plan_id)] == entries
    assert next(e for e in service.list_entries(plan_id=plan_id) if e.id == entry_id).runs == 10
    assert [m.to_dict() for m in service.list_materials(plan_id=plan_id)] == materials


def test_failed_reconcile_rolls_back_build_progress(service, monkeypatch) -> None:
    plan_id, _ = _plan_with_a(service)
    b = next(e for e in service.list_intermediates(plan_id=plan_id) if e.blueprint_type_id == BP_B)
    materials = [m.to_dict() for m in service.list_materials(plan_id=plan_id)]

    def _broken(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(build_progress, "apply_manufactured_materials", _broken)

    with pytest.raises(ServiceError) as exc:
        service.mark_built(entry_id=b.id, built_runs=5)

    assert exc.value.status_code == 500
    b = next(e for e in service.list_intermediates(plan_id=plan_id) if e.blueprint_type_id == BP_B)
    assert (b.built_runs, b.is_built) == (0, False)
    assert [m.to_dict() for m in service.list_materials(plan_id=plan_id)] == materials


# --------------------------
# Plan settings
# --------------------------
def test_plan_settings_default_to_global_market(service) -> None:
    plan_id, _ = _plan_with_a(service)

    out = service.get_plan_settings(plan_id=plan_id)

    assert out["settings"].reactions_as_intermediates is False
    assert out["settings"].input_price_kind is None
    assert out["effective_market"]["input_price_kind"] == "sell"
    assert out["effective_market"]["input_region_id"] == 10000002


def test_update_plan_settings_reprices_with_overrides(service, pricing) -> None:
    plan_id, _ = _plan_with_a(service)
    pricing.calls.clear()

    out = service.update_plan_settings(plan_id=plan_id, data={"output_price_kind": "BUY", "input_location_id": None})

    assert out["settings"].output_price_kind == "buy"
    assert out["effective_market"]["output_price_kind"] == "buy"
    assert out["effective_market"]["input_location_id"] == 60003760
    assert (PRODUCT_A, "buy") in pricing.calls
    assert (RAW_1, "sell") in pricing.calls
    assert out["recalculation"].success

    cleared = service.update_plan_settings(plan_id=plan_id, data={"output_price_kind": None})
    assert cleared["effective_market"]["output_price_kind"] == "sell"


def test_toggling_reactions_rebuilds_the_tree(service, pricing) -> None:
    plan_id, _ = _plan_with_a(service)
    calls = len(pricing.calls)

    service.update_plan_settings(plan_id=plan_id, data={"reactions_as_intermediates": True})

    assert len(pricing.calls) == calls
    assert _materials(service, plan_id) == {RAW_1: 30, RAW_2: 100, MOON_1: 300, FUEL: 15}
    assert len(service.list_reactions(plan_id=plan_id)) == 1

    service.update_plan_settings(plan_id=plan_id, data={"reactions_as_intermediates": False})

    assert _materials(service, plan_id) == {RAW_1: 30, RAW_2: 100, RAW_3: 50}
    assert service.list_reactions(plan_id=plan_id) == []


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"input_price_kind": "cheap"},
        {"output_region_id": "forge"},
        {"input_region_id": 0},
        {"reactions_as_intermediates": "yes"},
    ],
)
def test_update_plan_settings_validation(service, data) -> None:
    plan_id, _ = _plan_with_a(service)

    with pytest.raises(ServiceError) as exc:
        service.update_plan_settings(plan_id=plan_id, data=data)
    assert exc.value.status_code == 400


def test_acquisition_log_limit_is_clamped(service) -> None:
    plan_id, _entry_id = _plan_with_a(service)
    service.mark_material_acquired(plan_id=plan_id, type_id=RAW_1, data={"quantity": 1})

    assert len(service.get_acquisition_log(plan_id=plan_id, limit=0)) == 1
    assert len(service.get_acquisition_log(plan_id=plan_id, limit=5000)) == 1


def test_plan_locks_are_per_plan() -> None:
    locks = PlanLocks()

    assert locks.for_plan(1) is locks.for_plan(1)
    assert locks.for_plan(1) is not locks.for_plan(2)

    held = locks.for_plan(1)
    with held:
        acquired = []
        t = threading.Thread(target=lambda: acquired.append(locks.for_plan(2).acquire(timeout=1)))
        t.start()
        t.join()
        assert acquired == [True]
        # Re-entrant for the holding thread.
        assert held.acquire(blocking=False)
        held.release()
