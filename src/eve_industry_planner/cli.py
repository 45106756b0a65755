from __future__ import annotations

import argparse
import json
import logging
import os

import pandas as pd

from eve_industry_planner.application.errors import ServiceError
from eve_industry_planner.application.plans.service import PlansService
from eve_industry_planner.config.settings import flask_debug, flask_host, flask_port
from eve_industry_planner.infrastructure.database_manager import transaction
from eve_industry_planner.infrastructure.sde.blueprints import import_blueprints_yaml
from eve_industry_planner.utils.logging_setup import configure_logging

from planner_api.app import create_app
from planner_api.bootstrap import init_db_managers, initialize_application
from planner_api.state import AppState


def _ready_state() -> AppState:
    state = AppState()
    initialize_application(state)
    if state.init_state != "Ready":
        raise RuntimeError(f"Initialization failed: {state.init_error}")
    return state


def cmd_init_db(_args: argparse.Namespace) -> int:
    db_app, db_sde = init_db_managers(create_tables=True)
    logging.info("App tables: %s", ", ".join(db_app.list_tables()))
    logging.info("SDE tables: %s", ", ".join(db_sde.list_tables()))
    return 0


def cmd_import_sde(args: argparse.Namespace) -> int:
    _db_app, db_sde = init_db_managers(create_tables=True)
    session = db_sde.Session()
    try:
        with transaction(session):
            count = import_blueprints_yaml(session, args.path)
    finally:
        session.close()
    print(f"Imported {count} blueprints")
    return 0


def cmd_serve(_args: argparse.Namespace) -> int:
    app = create_app()
    initialize_application(app.extensions.get("app_state"))
    app.run(host=flask_host(), port=flask_port(), debug=flask_debug(), use_reloader=False)
    return 0


def cmd_recalculate(args: argparse.Namespace) -> int:
    state = _ready_state()
    result = PlansService(state=state).recalculate(plan_id=args.plan_id, refresh_prices=args.refresh_prices)
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    state = _ready_state()
    # Raises a 404 ServiceError for unknown plans.
    PlansService(state=state).get_plan(plan_id=args.plan_id)

    materials = state.db_app.load_df("plan_materials", where={"plan_id": args.plan_id})
    products = state.db_app.load_df("plan_products", where={"plan_id": args.plan_id})
    materials.insert(0, "ledger", "material")
    products.insert(0, "ledger", "product")
    frame = pd.concat([materials, products], ignore_index=True, sort=False)

    directory = os.path.dirname(args.out)
    if directory:
        os.makedirs(directory, exist_ok=True)
    frame.to_csv(args.out, index=False)
    logging.info("Exported %s ledger rows of plan %s to %s", len(frame), args.plan_id, args.out)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eve-industry-planner",
        description="Manufacturing plan recalculation engine (Flask API + maintenance commands).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: %(default)s)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the application and SDE tables.")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("import-sde", help="Load blueprints from an SDE blueprints.yaml file.")
    p.add_argument("path", help="Path to blueprints.yaml")
    p.set_defaults(func=cmd_import_sde)

    p = sub.add_parser("serve", help="Run the HTTP API.")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("recalculate", help="Recalculate one plan.")
    p.add_argument("plan_id", type=int)
    p.add_argument("--refresh-prices", action="store_true", help="Fetch fresh market prices.")
    p.set_defaults(func=cmd_recalculate)

    p = sub.add_parser("export", help="Write a plan's material and product ledgers to CSV.")
    p.add_argument("plan_id", type=int)
    p.add_argument("--out", required=True, help="Output CSV path")
    p.set_defaults(func=cmd_export)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(default_level=str(args.log_level).upper())

    try:
        return int(args.func(args) or 0)
    except ServiceError as e:
        logging.error("%s (status %s)", e.message, e.status_code)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
