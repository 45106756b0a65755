from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os
from typing import Optional

from eve_industry_planner.application.plans.collaborators import MarketSettings


def _env(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None or value == "" else value


def _bool(name: str, default: bool) -> bool:
    raw = _env(name, "1" if default else "0").strip().lower()
    return raw in {"1", "true", "yes", "y", "on"}


def _int(name: str, default: int) -> int:
    raw = _env(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        return default


def _optional_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() in {"none", "null", "0"}:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return default


# The Forge / Jita IV - Moon 4 - Caldari Navy Assembly Plant
DEFAULT_REGION_ID = 10000002
DEFAULT_LOCATION_ID = 60003760


@dataclass(frozen=True)
class PlannerSettings:
    database_uri: str
    sde_database_uri: str
    max_depth: int
    input_region_id: int
    input_location_id: Optional[int]
    input_price_kind: str
    output_region_id: int
    output_location_id: Optional[int]
    output_price_kind: str
    price_workers: int
    esi_base_url: str
    esi_user_agent: str
    esi_request_timeout_seconds: int
    flask_host: str
    flask_port: int
    flask_debug: bool


@lru_cache(maxsize=1)
def get_settings() -> PlannerSettings:
    return PlannerSettings(
        database_uri=_env("PLANNER_DATABASE_URI", "sqlite:///database/eve_planner.db"),
        sde_database_uri=_env("PLANNER_SDE_DATABASE_URI", "sqlite:///database/eve_sde.db"),
        max_depth=_int("PLANNER_MAX_DEPTH", default=10),
        input_region_id=_int("PLANNER_INPUT_REGION_ID", default=DEFAULT_REGION_ID),
        input_location_id=_optional_int("PLANNER_INPUT_LOCATION_ID", DEFAULT_LOCATION_ID),
        input_price_kind=_env("PLANNER_INPUT_PRICE_KIND", "sell").lower(),
        output_region_id=_int("PLANNER_OUTPUT_REGION_ID", default=DEFAULT_REGION_ID),
        output_location_id=_optional_int("PLANNER_OUTPUT_LOCATION_ID", DEFAULT_LOCATION_ID),
        output_price_kind=_env("PLANNER_OUTPUT_PRICE_KIND", "sell").lower(),
        price_workers=_int("PLANNER_PRICE_WORKERS", default=4),
        esi_base_url=_env("ESI_BASE_URL", "https://esi.evetech.net/latest"),
        esi_user_agent=_env("ESI_USER_AGENT", "eve-industry-planner"),
        esi_request_timeout_seconds=_int("ESI_REQUEST_TIMEOUT", default=15),
        flask_host=_env("FLASK_HOST", "localhost"),
        flask_port=_int("FLASK_PORT", default=5000),
        flask_debug=_bool("FLASK_DEBUG", default=False),
    )


def market_settings() -> MarketSettings:
    s = get_settings()
    return MarketSettings(
        input_region_id=s.input_region_id,
        input_location_id=s.input_location_id,
        input_price_kind=s.input_price_kind,
        output_region_id=s.output_region_id,
        output_location_id=s.output_location_id,
        output_price_kind=s.output_price_kind,
    )


def max_depth() -> int:
    # Guards against cyclic recipe graphs.
    return max(1, get_settings().max_depth)


def price_workers() -> int:
    return max(1, get_settings().price_workers)


def flask_host() -> str:
    return get_settings().flask_host


def flask_port() -> int:
    return get_settings().flask_port


def flask_debug() -> bool:
    return get_settings().flask_debug
