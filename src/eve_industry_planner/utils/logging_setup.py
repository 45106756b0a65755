from __future__ import annotations

import logging
import logging.handlers
import os


def _env(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None or value == "" else value


def configure_logging(
    *,
    default_level: str = "INFO",
    fmt: str = "%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt: str = "%Y-%m-%d %H:%M:%S",
    force: bool = True,
) -> None:
    """Configure stdlib logging for the CLI and the API server.

    Environment variables:
    - LOG_LEVEL: overrides default_level (e.g. DEBUG, INFO)
    - LOG_FORCE: when set to 0/false, an existing configuration is kept
    - PLANNER_LOG_FILE: also write to this file, rotated at 5 MB with 3 backups
    """

    level = getattr(logging, _env("LOG_LEVEL", default_level).upper(), logging.INFO)
    reconfigure = force and _env("LOG_FORCE", "1").lower() not in {"0", "false", "no"}

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = os.getenv("PLANNER_LOG_FILE")
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        )

    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, handlers=handlers, force=reconfigure)

    logging.getLogger("werkzeug").setLevel(level)
    # SQL echo stays quiet unless DEBUG is asked for.
    if level > logging.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
