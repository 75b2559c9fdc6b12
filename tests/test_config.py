"""Tests for environment-driven engine configuration."""

import os
from unittest.mock import patch

import pytest

from rebalancer.automation.scheduler import SchedulerConfig
from rebalancer.config import EngineConfig
from rebalancer.errors import InvalidInput


def test_from_env_requires_operator() -> None:
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(RuntimeError, match="REBALANCER_OPERATOR"):
            EngineConfig.from_env()


def test_from_env_requires_max_order_size() -> None:
    with patch.dict(os.environ, {"REBALANCER_OPERATOR": "ops"}, clear=True):
        with pytest.raises(RuntimeError, match="REBALANCER_MAX_ORDER_SIZE"):
            EngineConfig.from_env()


def test_from_env_defaults() -> None:
    with patch.dict(os.environ, {"REBALANCER_OPERATOR": "ops", "REBALANCER_MAX_ORDER_SIZE": "1000"}, clear=True):
        config = EngineConfig.from_env()

    assert config.operator == "ops"
    assert config.policy.max_order_size == 1000
    assert config.assets == ("WETH", "USDC")
    assert config.policy.rebalance_threshold_bps == 200
    assert config.scheduler.trigger_mode == "interval"
    assert config.slippage_tolerance_bps == 50
    assert config.oracle_url is None


def test_from_env_overrides() -> None:
    env = {
        "REBALANCER_OPERATOR": "ops",
        "REBALANCER_ASSETS": "WETH, USDC, DAI",
        "REBALANCER_MAX_ORDER_SIZE": "5000",
        "REBALANCER_MIN_PROFIT_BPS": "15",
        "REBALANCER_REBALANCE_BPS": "250",
        "REBALANCER_STOP_LOSS_BPS": "900",
        "REBALANCER_MITIGATION_BPS": "400",
        "REBALANCER_POLL_INTERVAL": "12.5",
        "REBALANCER_TRIGGER_MODE": "upkeep",
        "REBALANCER_QUOTE_TIMEOUT": "1.5",
        "REBALANCER_DEADLINE_SECONDS": "30",
        "REBALANCER_SLIPPAGE_BPS": "25",
        "REBALANCER_ORACLE_URL": "https://example.test/price",
        "REBALANCER_ORACLE_FIELD": "data.price",
    }
    config = EngineConfig.from_env(env)

    assert config.assets == ("WETH", "USDC", "DAI")
    assert config.policy.max_order_size == 5000
    assert config.policy.min_profit_threshold_bps == 15
    assert config.policy.stop_loss_threshold_bps == 900
    assert config.policy.mitigation_threshold_bps == 400
    assert config.scheduler.poll_interval == 12.5
    assert config.scheduler.trigger_mode == "upkeep"
    assert config.quote_timeout_seconds == 1.5
    assert config.deadline_seconds == 30
    assert config.slippage_tolerance_bps == 25
    assert config.oracle_url == "https://example.test/price"
    assert config.oracle_field == "data.price"


def test_from_env_rejects_non_integer() -> None:
    with pytest.raises(InvalidInput, match="REBALANCER_MAX_ORDER_SIZE"):
        EngineConfig.from_env({"REBALANCER_OPERATOR": "ops", "REBALANCER_MAX_ORDER_SIZE": "lots"})


@pytest.mark.parametrize("assets", [("WETH",), ("A", "B", "C", "D"), ("WETH", "WETH")])
def test_asset_count_and_uniqueness(assets) -> None:
    with pytest.raises(InvalidInput):
        EngineConfig(operator="ops", assets=assets)


def test_unknown_trigger_mode() -> None:
    with pytest.raises(InvalidInput):
        EngineConfig(operator="ops", scheduler=SchedulerConfig(trigger_mode="cron"))  # type: ignore[arg-type]
