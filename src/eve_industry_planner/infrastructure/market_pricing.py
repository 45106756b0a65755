from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

import requests

from eve_industry_planner.application.errors import PriceUnavailableError


logger = logging.getLogger(__name__)

PRICE_KIND_SELL = "sell"
PRICE_KIND_BUY = "buy"
PRICE_KIND_AVERAGE = "average"
PRICE_KIND_ADJUSTED = "adjusted"
PRICE_KINDS = frozenset({PRICE_KIND_SELL, PRICE_KIND_BUY, PRICE_KIND_AVERAGE, PRICE_KIND_ADJUSTED})


def calculate_vwap(orders: list[dict[str, Any]], quantity: int, *, is_buy: bool) -> dict[str, Any]:
    """Volume-weighted price of filling `quantity` from the best orders of one side.

    Returns price (0.0 when nothing could be filled), quantity_filled and whether the
    book was too thin to fill the whole request.
    """

    side = [o for o in orders or [] if bool(o.get("is_buy_order")) == is_buy]
    side.sort(key=lambda o: float(o.get("price") or 0.0), reverse=is_buy)

    wanted = max(1, int(quantity))
    remaining = wanted
    total_cost = 0.0
    orders_used = 0
    for order in side:
        if remaining <= 0:
            break
        take = min(remaining, int(order.get("volume_remain") or 0))
        if take <= 0:
            continue
        total_cost += take * float(order.get("price") or 0.0)
        remaining -= take
        orders_used += 1

    filled = wanted - remaining
    return {
        "price": (total_cost / filled) if filled > 0 else 0.0,
        "quantity_filled": filled,
        "orders_used": orders_used,
        "incomplete": remaining > 0,
    }


class EsiMarketPricing:
    """Price estimator backed by public ESI market endpoints.

    `sell`/`buy` estimates walk the regional order book (optionally limited to one
    location) and return the VWAP for the requested quantity. `average`/`adjusted`
    use the universe-wide /markets/prices/ table, which is fetched once and cached.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://esi.evetech.net/latest",
        user_agent: str = "eve-industry-planner",
        timeout_seconds: int = 15,
        prices_ttl_seconds: int = 3600,
        http: Any = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json", "User-Agent": user_agent}
        self._timeout = timeout_seconds
        self._prices_ttl = prices_ttl_seconds
        self._http = http or requests
        self._prices_lock = threading.Lock()
        self._prices_cache: Optional[tuple[float, dict[int, dict[str, Optional[float]]]]] = None

    def _get(self, endpoint: str, params: Optional[dict] = None) -> requests.Response:
        url = f"{self._base_url}{endpoint}"
        try:
            response = self._http.get(url, headers=self._headers, params=params, timeout=self._timeout)
        except requests.RequestException as e:
            raise PriceUnavailableError(f"ESI request error {url}: {e}") from e
        if response.status_code != 200:
            raise PriceUnavailableError(f"ESI GET {response.status_code} on {url}")
        return response

    def get_region_orders(self, region_id: int, type_id: int, order_type: str) -> list[dict[str, Any]]:
        endpoint = f"/markets/{int(region_id)}/orders/"
        params = {"type_id": int(type_id), "order_type": order_type, "page": 1}
        response = self._get(endpoint, params)
        orders = list(response.json() or [])

        pages = int(response.headers.get("X-Pages", 1) or 1)
        for page in range(2, pages + 1):
            params["page"] = page
            orders.extend(self._get(endpoint, params).json() or [])
        return orders

    def get_market_prices(self) -> dict[int, dict[str, Optional[float]]]:
        with self._prices_lock:
            now = time.time()
            if self._prices_cache is not None and now - self._prices_cache[0] < self._prices_ttl:
                return self._prices_cache[1]

            out: dict[int, dict[str, Optional[float]]] = {}
            for row in self._get("/markets/prices/").json() or []:
                if not isinstance(row, dict) or row.get("type_id") is None:
                    continue
                out[int(row["type_id"])] = {
                    "average_price": row.get("average_price"),
                    "adjusted_price": row.get("adjusted_price"),
                }
            self._prices_cache = (now, out)
            return out

    def estimate_price(
        self,
        type_id: int,
        region_id: int,
        location_id: Optional[int],
        price_kind: str,
        quantity: int,
    ) -> float:
        kind = str(price_kind or PRICE_KIND_SELL).lower()
        if kind not in PRICE_KINDS:
            raise ValueError(f"Unsupported price kind: {price_kind}")

        if kind in (PRICE_KIND_AVERAGE, PRICE_KIND_ADJUSTED):
            row = self.get_market_prices().get(int(type_id)) or {}
            price = row.get(f"{kind}_price")
            if not isinstance(price, (int, float)) or float(price) <= 0:
                raise PriceUnavailableError(f"No {kind} price for type {type_id}")
            return float(price)

        is_buy = kind == PRICE_KIND_BUY
        orders = self.get_region_orders(region_id, type_id, kind)
        if location_id:
            orders = [o for o in orders if int(o.get("location_id") or 0) == int(location_id)]

        vwap = calculate_vwap(orders, quantity, is_buy=is_buy)
        if vwap["price"] <= 0:
            raise PriceUnavailableError(f"No {kind} orders for type {type_id} in region {region_id}")
        if vwap["incomplete"]:
            logger.debug(
                "Insufficient market depth for type %s (%s/%s available)",
                type_id,
                vwap["quantity_filled"],
                quantity,
            )
        return float(vwap["price"])
