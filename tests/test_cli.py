from __future__ import annotations

import pandas as pd
import pytest

from eve_industry_planner import cli
from eve_industry_planner.application.plans.service import PlansService
from eve_industry_planner.db_models import BaseApp, BaseSde
from eve_industry_planner.infrastructure.database_manager import DatabaseManager

from planner_api.state import AppState

from planner_testkit import BP_A, CHARACTER_ID, FakePricing, make_catalog


@pytest.fixture
def ready_state(monkeypatch):
    db_app = DatabaseManager("sqlite+pysqlite:///:memory:", metadata=BaseApp.metadata)
    db_sde = DatabaseManager("sqlite+pysqlite:///:memory:", metadata=BaseSde.metadata)
    db_app.create_all()
    db_sde.create_all()
    state = AppState(
        init_state="Ready",
        db_app=db_app,
        db_sde=db_sde,
        pricing=FakePricing(),
        blueprint_catalog=make_catalog(),
    )
    monkeypatch.setattr(cli, "_ready_state", lambda: state)
    return state


def _plan(state: AppState) -> int:
    service = PlansService(state=state)
    plan = service.create_plan(data={"character_id": CHARACTER_ID})
    service.add_entry(plan_id=plan.id, data={"blueprint_type_id": BP_A, "runs": 10})
    return plan.id


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.main([])


def test_recalculate_prints_result(ready_state, capsys) -> None:
    plan_id = _plan(ready_state)

    assert cli.main(["recalculate", str(plan_id)]) == 0

    out = capsys.readouterr().out
    assert f'"plan_id": {plan_id}' in out
    assert '"material_count": 3' in out


def test_unknown_plan_exits_non_zero(ready_state) -> None:
    assert cli.main(["recalculate", "404"]) == 1
    assert cli.main(["export", "404", "--out", "unused.csv"]) == 1


def test_export_writes_both_ledgers(ready_state, tmp_path) -> None:
    plan_id = _plan(ready_state)
    out = tmp_path / "exports" / "plan.csv"

    assert cli.main(["export", str(plan_id), "--out", str(out)]) == 0

    frame = pd.read_csv(out)
    assert sorted(frame["ledger"].unique()) == ["material", "product"]
    assert (frame["ledger"] == "material").sum() == 3
    assert (frame["ledger"] == "product").sum() == 3
