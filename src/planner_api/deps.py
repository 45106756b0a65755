from __future__ import annotations

from typing import cast

from flask import current_app

from planner_api.state import AppState, state as default_state


def get_state() -> AppState:
    """Return the AppState for the current Flask app.

    Outside an app context (CLI, background threads) the module-level state is used.
    """

    try:
        app = current_app._get_current_object()
    except RuntimeError:
        return default_state

    return cast(AppState, app.extensions.get("app_state", default_state))
