from __future__ import annotations

import logging
from typing import Optional

from flask import g

from planner_api.deps import get_state


logger = logging.getLogger(__name__)


def _get_or_create_session(g_key: str, session_factory) -> object:
    session = getattr(g, g_key, None)
    if session is None:
        session = session_factory()
        setattr(g, g_key, session)
    return session


def get_db_app_session():
    s = get_state()
    if s.db_app is None:
        raise RuntimeError("Application not ready: App DB not initialized")
    return _get_or_create_session("_db_app_session", s.db_app.Session)


def get_db_sde_session():
    s = get_state()
    if s.db_sde is None:
        raise RuntimeError("Application not ready: SDE DB not initialized")
    return _get_or_create_session("_db_sde_session", s.db_sde.Session)


def close_request_sessions(exc: Optional[BaseException] = None) -> None:
    for key in ("_db_app_session", "_db_sde_session"):
        session = g.pop(key, None)
        if session is None:
            continue
        try:
            session.close()
        except Exception as e:
            # Closing must not mask the request's own exception.
            logger.warning("Failed to close request session %s: %s", key, e)
