from __future__ import annotations

from typing import Any, Dict, Optional

from flask import jsonify


def to_jsonable(value: Any) -> Any:
    """Render domain objects (anything with `to_dict`) and containers of them as JSON-ready data."""

    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def ok(*, data: Any = None, message: Optional[str] = None, status_code: int = 200, **extra: Any):
    payload: Dict[str, Any] = {"status": "success"}
    if message is not None:
        payload["message"] = message
    if data is not None:
        payload["data"] = to_jsonable(data)
    payload.update(extra)
    return jsonify(payload), status_code


def error(*, message: str, status_code: int = 500, data: Any = None, **extra: Any):
    payload: Dict[str, Any] = {"status": "error", "message": message, "error": {"message": message, "status": status_code}}
    if data is not None:
        payload["data"] = to_jsonable(data)
    payload.update(extra)
    return jsonify(payload), status_code
