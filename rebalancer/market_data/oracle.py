"""HTTP reference price oracle.

Reads a JSON document from a price endpoint and converts the selected field
into the engine's 8-decimal fixed-point integer price.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

import requests

from rebalancer.types import PRICE_DECIMALS, PriceObservation


def to_fixed_point(value: Any, decimals: int = PRICE_DECIMALS) -> int:
    """Convert a decimal price (str/float/int) into an integer with `decimals` places."""
    try:
        price = Decimal(str(value))
    except InvalidOperation as exc:
        raise RuntimeError(f"Unparseable price: {value!r}") from exc
    if price < 0:
        raise RuntimeError(f"Negative price: {price}")
    scaled = (price * (Decimal(10) ** decimals)).quantize(Decimal("1"), rounding=ROUND_DOWN)
    return int(scaled)


class HttpPriceOracle:
    """Price oracle backed by a JSON HTTP endpoint.

    `field_path` is a dot-separated path into the response, e.g.
    "ethereum.usd" for CoinGecko's simple price endpoint.
    """

    DEFAULT_TIMEOUT = 10  # seconds

    def __init__(
        self,
        *,
        url: str,
        field_path: str,
        params: dict[str, str] | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.field_path = field_path
        self.params = params or {}
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": "liquidity-rebalancer/1.0",
            }
        )

    def fetch_price(self) -> PriceObservation:
        """Blocking fetch of the current price.

        Raises:
            RuntimeError: If the request fails or the field is missing
        """
        try:
            response = self._session.get(self.url, params=self.params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as exc:
            raise RuntimeError(f"Price request failed: {exc}") from exc
        except ValueError as exc:
            raise RuntimeError(f"Price response is not JSON: {exc}") from exc

        value: Any = data
        for key in self.field_path.split("."):
            if not isinstance(value, dict) or key not in value:
                raise RuntimeError(f"Field '{self.field_path}' missing from price response")
            value = value[key]

        return PriceObservation(price=to_fixed_point(value), observed_at=datetime.now(timezone.utc))

    async def current_price(self) -> PriceObservation:
        # requests is blocking; keep it off the event loop
        return await asyncio.to_thread(self.fetch_price)
