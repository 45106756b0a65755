from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ServiceError(Exception):
    message: str
    status_code: int = 500
    data: Any = None
    meta: Any = None

    def __str__(self) -> str:
        return self.message


class PriceUnavailableError(Exception):
    """Raised by a price estimator when no usable price exists for an item."""


def not_found(what: str, ident: Any) -> ServiceError:
    return ServiceError(f"{what} {ident} not found", status_code=404)


def bad_request(message: str, **data: Any) -> ServiceError:
    return ServiceError(message, status_code=400, data=data or None)
