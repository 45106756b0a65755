from __future__ import annotations

from eve_industry_planner.config.settings import flask_debug, flask_host, flask_port
from eve_industry_planner.utils.logging_setup import configure_logging

from planner_api.app import create_app
from planner_api.bootstrap import initialize_application


def main() -> None:
    configure_logging(default_level="INFO")

    app = create_app()
    initialize_application(app.extensions.get("app_state"))

    # Avoid Werkzeug reloader to prevent double-starting.
    app.run(host=flask_host(), port=flask_port(), debug=flask_debug(), use_reloader=False)


if __name__ == "__main__":
    main()
