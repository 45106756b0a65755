from __future__ import annotations

import pytest

from eve_industry_planner.application.errors import ServiceError
from eve_industry_planner.application.plans.acquisitions import mark_material_acquired
from eve_industry_planner.infrastructure.persistence import plan_ledger_repo, plans_repo

from planner_testkit import BP_A, BP_B, BP_C, BP_D, BP_E, CHARACTER_ID, FUEL, MOON_1, RAW_2, RAW_3, REACTION_F


def _plan(service, *entries: dict) -> int:
    plan = service.create_plan(data={"character_id": CHARACTER_ID})
    for data in entries:
        service.add_entry(plan_id=plan.id, data=data)
    return plan.id


def _intermediate(service, plan_id: int, blueprint_type_id: int):
    return next(e for e in service.list_intermediates(plan_id=plan_id) if e.blueprint_type_id == blueprint_type_id)


def _material(service, plan_id: int, type_id: int):
    return next(m for m in service.list_materials(plan_id=plan_id) if m.type_id == type_id)


def test_marking_intermediate_built_moves_its_materials_to_manufactured(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)
    assert b.runs == 25

    service.mark_built(entry_id=b.id, built_runs=25)

    r2 = _material(service, plan_id, RAW_2)
    assert r2.quantity == 100
    assert r2.manufactured_quantity == 100
    assert r2.remaining_quantity == 0
    assert r2.acquisition_method == "manufactured"
    assert r2.system_note == "Auto-acquired from built components"
    # C is expanded through B's own subtree.
    assert _material(service, plan_id, RAW_3).manufactured_quantity == 50

    entry = service.list_intermediates(plan_id=plan_id)
    assert next(e for e in entry if e.id == b.id).is_built is True


def test_sibling_intermediates_sum_into_one_material_line(service) -> None:
    # E needs B (1 run: 4 RAW_2) and D (3 runs: 3 RAW_2).
    plan_id = _plan(service, {"blueprint_type_id": BP_E, "runs": 1})
    b = _intermediate(service, plan_id, BP_B)
    d = _intermediate(service, plan_id, BP_D)

    service.mark_built(entry_id=b.id, built_runs=1)
    service.mark_built(entry_id=d.id, built_runs=3)

    r2 = _material(service, plan_id, RAW_2)
    assert r2.quantity == 7
    assert r2.manufactured_quantity == 7
    assert r2.acquisition_method == "manufactured"


def test_partial_build_with_manual_purchase_is_mixed(service, session) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)
    service.mark_material_acquired(plan_id=plan_id, type_id=RAW_2, data={"quantity": 20, "acquisition_method": "gift"})

    service.mark_built(entry_id=b.id, built_runs=10)

    r2 = _material(service, plan_id, RAW_2)
    assert r2.manufactured_quantity == 40
    assert r2.manually_acquired_quantity == 20
    assert r2.acquisition_method == "mixed"
    assert r2.system_note == "Manufactured: 40, gift: 20"
    assert r2.remaining_quantity == 40


def test_fully_built_parent_covers_its_descendants(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)
    c = _intermediate(service, plan_id, BP_C)

    service.mark_built(entry_id=c.id, built_runs=25)
    service.mark_built(entry_id=b.id, built_runs=25)

    assert _material(service, plan_id, RAW_3).manufactured_quantity == 50


def test_partly_built_parent_does_not_recount_built_child(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)
    c = _intermediate(service, plan_id, BP_C)

    service.mark_built(entry_id=c.id, built_runs=25)
    service.mark_built(entry_id=b.id, built_runs=24)

    raw_3 = _material(service, plan_id, RAW_3)
    assert (raw_3.quantity, raw_3.manufactured_quantity) == (50, 50)
    assert _material(service, plan_id, RAW_2).manufactured_quantity == 96

    service.mark_built(entry_id=b.id, built_runs=25)

    assert _material(service, plan_id, RAW_3).manufactured_quantity == 50
    assert _material(service, plan_id, RAW_2).manufactured_quantity == 100


def test_built_parent_accounts_for_unbuilt_child(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)
    c = _intermediate(service, plan_id, BP_C)

    # 10 runs of B consumed 10 C, which consumed 20 RAW_3.
    service.mark_built(entry_id=b.id, built_runs=10)
    assert _material(service, plan_id, RAW_3).manufactured_quantity == 20

    # Recording more C than B consumed counts the extra.
    service.mark_built(entry_id=c.id, built_runs=15)
    assert _material(service, plan_id, RAW_3).manufactured_quantity == 30


def test_reconcile_is_idempotent(service, session) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)
    service.mark_built(entry_id=b.id, built_runs=12)
    before = [m.to_dict() for m in service.list_materials(plan_id=plan_id)]
    log_size = len(plan_ledger_repo.list_acquisition_log(session, plan_id))

    service.recalculate(plan_id=plan_id)

    assert [m.to_dict() for m in service.list_materials(plan_id=plan_id)] == before
    assert len(plan_ledger_repo.list_acquisition_log(session, plan_id)) == log_size


def test_unmarking_built_runs_clears_manufactured(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)
    service.mark_built(entry_id=b.id, built_runs=25)

    service.mark_built(entry_id=b.id, built_runs=0)

    r2 = _material(service, plan_id, RAW_2)
    assert r2.manufactured_quantity == 0
    assert r2.acquisition_method is None


@pytest.mark.parametrize("built_runs", [-1, 26, "many"])
def test_mark_built_rejects_out_of_range_values(service, built_runs) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)

    with pytest.raises(ServiceError) as exc:
        service.mark_built(entry_id=b.id, built_runs=built_runs)
    assert exc.value.status_code == 400


def test_mark_built_rejects_top_level_entries(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    top = next(e for e in service.list_entries(plan_id=plan_id) if not e.is_intermediate)

    with pytest.raises(ServiceError) as exc:
        service.mark_built(entry_id=top.id, built_runs=1)
    assert exc.value.status_code == 400


def test_lowering_demand_clamps_built_runs(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    top = next(e for e in service.list_entries(plan_id=plan_id) if not e.is_intermediate)
    b = _intermediate(service, plan_id, BP_B)
    service.mark_built(entry_id=b.id, built_runs=20)

    service.update_entry(entry_id=top.id, data={"runs": 4})

    b = _intermediate(service, plan_id, BP_B)
    assert b.runs == 10
    assert b.built_runs == 10
    assert b.is_built is True
    assert _material(service, plan_id, RAW_2).manufactured_quantity == 40


def test_built_reactions_count_as_manufactured(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    service.update_plan_settings(plan_id=plan_id, data={"reactions_as_intermediates": True})
    (reaction,) = service.list_reactions(plan_id=plan_id)
    assert (reaction.blueprint_type_id, reaction.runs) == (REACTION_F, 3)

    service.mark_reaction_built(entry_id=reaction.id, built_runs=3)

    moon = _material(service, plan_id, MOON_1)
    assert (moon.quantity, moon.manufactured_quantity) == (300, 300)
    assert moon.acquisition_method == "manufactured"
    assert _material(service, plan_id, FUEL).manufactured_quantity == 15


def test_built_parent_implies_its_reaction_runs(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    service.update_plan_settings(plan_id=plan_id, data={"reactions_as_intermediates": True})
    c = _intermediate(service, plan_id, BP_C)

    # 10 runs of C consume 20 RAW_3: one 20-unit reaction run.
    service.mark_built(entry_id=c.id, built_runs=10)

    assert _material(service, plan_id, MOON_1).manufactured_quantity == 100
    assert _material(service, plan_id, FUEL).manufactured_quantity == 5


def test_mark_reaction_built_rejects_manufacturing_entries(service) -> None:
    plan_id = _plan(service, {"blueprint_type_id": BP_A, "runs": 10})
    b = _intermediate(service, plan_id, BP_B)

    with pytest.raises(ServiceError) as exc:
        service.mark_reaction_built(entry_id=b.id, built_runs=1)
    assert exc.value.status_code == 400
