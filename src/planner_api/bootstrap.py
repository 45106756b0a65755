from __future__ import annotations

import logging

from eve_industry_planner.config.settings import get_settings
from eve_industry_planner.db_models import BaseApp, BaseSde
from eve_industry_planner.infrastructure.database_manager import DatabaseManager
from eve_industry_planner.infrastructure.market_pricing import EsiMarketPricing

from planner_api.deps import get_state
from planner_api.state import AppState


def init_db_managers(*, create_tables: bool = True) -> tuple[DatabaseManager, DatabaseManager]:
    settings = get_settings()
    db_app = DatabaseManager(settings.database_uri, metadata=BaseApp.metadata)
    db_sde = DatabaseManager(settings.sde_database_uri, metadata=BaseSde.metadata)
    if create_tables:
        db_app.create_all()
        db_sde.create_all()
    logging.info("Databases ready: %s, %s", db_app.get_db_name(), db_sde.get_db_name())
    return db_app, db_sde


def init_pricing() -> EsiMarketPricing:
    settings = get_settings()
    return EsiMarketPricing(
        base_url=settings.esi_base_url,
        user_agent=settings.esi_user_agent,
        timeout_seconds=settings.esi_request_timeout_seconds,
    )


def initialize_application(app_state: AppState | None = None) -> None:
    """Open the databases and wire collaborators onto the app state (idempotent)."""

    state = app_state or get_state()
    with state.init_lock:
        if state.init_state == "Ready":
            return
        try:
            state.init_state = "Initializing Databases"
            if state.db_app is None or state.db_sde is None:
                state.db_app, state.db_sde = init_db_managers()

            state.init_state = "Initializing Pricing"
            if state.pricing is None:
                state.pricing = init_pricing()

            state.init_state = "Ready"
            state.init_error = None
        except Exception as e:
            state.init_error = str(e)
            logging.error("Failed to initialize application: %s", e, exc_info=True)
            state.init_state = f"Initialization Failed at step: {state.init_state}"


def require_ready(app_state: AppState | None = None) -> None:
    s = app_state or get_state()
    if s.init_state != "Ready":
        raise RuntimeError(f"Application not ready: {s.init_state}")
