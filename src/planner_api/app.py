from __future__ import annotations

import logging

from flask import Flask

from werkzeug.exceptions import HTTPException

from eve_industry_planner.application.errors import ServiceError

from planner_api.db import close_request_sessions
from planner_api.http import error
from planner_api.routes.admin import admin_bp
from planner_api.routes.plans import plans_bp
from planner_api.state import AppState, state


def create_app(app_state: AppState | None = None) -> Flask:
    app = Flask(__name__)

    # Routes read the state from the app instead of importing the module-level global.
    app.extensions["app_state"] = app_state or state

    # Sessions created during a request are always closed.
    app.teardown_appcontext(close_request_sessions)

    @app.errorhandler(HTTPException)
    def _handle_http_exception(e: HTTPException):
        return error(message=e.description, status_code=e.code or 500)

    @app.errorhandler(ServiceError)
    def _handle_service_error(e: ServiceError):
        extra = {"meta": e.meta} if e.meta is not None else {}
        if e.status_code >= 500:
            logging.error("Service error %s: %s", e.status_code, e.message)
        return error(message=e.message, status_code=e.status_code, data=e.data, **extra)

    @app.errorhandler(RuntimeError)
    def _handle_runtime_error(e: RuntimeError):
        msg = str(e)
        if msg.startswith("Application not ready:"):
            return error(message=msg, status_code=503)
        logging.exception("Unhandled RuntimeError")
        return error(message=msg, status_code=500)

    @app.errorhandler(Exception)
    def _handle_unhandled_exception(e: Exception):
        logging.exception("Unhandled exception")
        return error(message=str(e), status_code=500)

    app.register_blueprint(admin_bp)
    app.register_blueprint(plans_bp)

    return app
