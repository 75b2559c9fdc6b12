"""Tests for the HTTP price oracle."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from rebalancer.market_data.oracle import HttpPriceOracle, to_fixed_point


def test_to_fixed_point() -> None:
    assert to_fixed_point("2000") == 200_000_000_000
    assert to_fixed_point(Decimal("1.123456789")) == 112_345_678
    assert to_fixed_point(0.5, decimals=2) == 50


@pytest.mark.parametrize("value", ["-1", "abc", None])
def test_to_fixed_point_rejects_bad_values(value) -> None:
    with pytest.raises(RuntimeError):
        to_fixed_point(value)


def test_oracle_init_sets_headers() -> None:
    oracle = HttpPriceOracle(url="https://example.test/price", field_path="price", timeout=5)
    assert oracle.timeout == 5
    assert oracle._session.headers["Accept"] == "application/json"


@patch("rebalancer.market_data.oracle.requests.Session")
def test_fetch_price_nested_field(mock_session_class) -> None:
    mock_response = MagicMock()
    mock_response.json.return_value = {"ethereum": {"usd": 2345.67}}
    mock_session = MagicMock()
    mock_session.get.return_value = mock_response
    mock_session_class.return_value = mock_session

    oracle = HttpPriceOracle(
        url="https://api.coingecko.com/api/v3/simple/price",
        field_path="ethereum.usd",
        params={"ids": "ethereum", "vs_currencies": "usd"},
    )
    observation = oracle.fetch_price()

    assert observation.price == 234_567_000_000
    mock_session.get.assert_called_once_with(
        "https://api.coingecko.com/api/v3/simple/price",
        params={"ids": "ethereum", "vs_currencies": "usd"},
        timeout=HttpPriceOracle.DEFAULT_TIMEOUT,
    )


def test_fetch_price_missing_field() -> None:
    session = MagicMock()
    session.get.return_value.json.return_value = {"bitcoin": {"usd": 1}}
    oracle = HttpPriceOracle(url="https://example.test", field_path="ethereum.usd", session=session)

    with pytest.raises(RuntimeError, match="missing"):
        oracle.fetch_price()


def test_fetch_price_request_error() -> None:
    session = MagicMock()
    session.get.side_effect = requests.exceptions.ConnectionError("refused")
    oracle = HttpPriceOracle(url="https://example.test", field_path="price", session=session)

    with pytest.raises(RuntimeError, match="Price request failed"):
        oracle.fetch_price()


@pytest.mark.asyncio
async def test_current_price_runs_fetch() -> None:
    session = MagicMock()
    session.get.return_value.json.return_value = {"price": "1.5"}
    oracle = HttpPriceOracle(url="https://example.test", field_path="price", session=session)

    observation = await oracle.current_price()

    assert observation.price == 150_000_000
