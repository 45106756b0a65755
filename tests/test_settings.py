from __future__ import annotations

import pytest

from eve_industry_planner.config import settings


@pytest.fixture(autouse=True)
def fresh_settings():
    settings.get_settings.cache_clear()
    yield
    settings.get_settings.cache_clear()


def test_defaults(monkeypatch) -> None:
    for name in ("FLASK_HOST", "FLASK_PORT", "FLASK_DEBUG", "PLANNER_INPUT_PRICE_KIND", "PLANNER_INPUT_LOCATION_ID"):
        monkeypatch.delenv(name, raising=False)

    assert (settings.flask_host(), settings.flask_port(), settings.flask_debug()) == ("localhost", 5000, False)
    market = settings.market_settings()
    assert market.input_price_kind == "sell"
    assert market.input_location_id == settings.DEFAULT_LOCATION_ID


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("FLASK_HOST", "0.0.0.0")
    monkeypatch.setenv("FLASK_PORT", "8080")
    monkeypatch.setenv("FLASK_DEBUG", "yes")
    monkeypatch.setenv("PLANNER_INPUT_PRICE_KIND", "BUY")
    monkeypatch.setenv("PLANNER_INPUT_LOCATION_ID", "none")
    monkeypatch.setenv("PLANNER_MAX_DEPTH", "0")

    assert (settings.flask_host(), settings.flask_port(), settings.flask_debug()) == ("0.0.0.0", 8080, True)
    market = settings.market_settings()
    assert market.input_price_kind == "buy"
    # Region-wide prices.
    assert market.input_location_id is None
    assert settings.max_depth() == 1


def test_malformed_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("FLASK_PORT", "http")
    monkeypatch.setenv("PLANNER_PRICE_WORKERS", "many")

    assert settings.flask_port() == 5000
    assert settings.price_workers() == 4
