#!/usr/bin/env python3
"""Run the rebalancing scheduler against paper collaborators.

The engine starts from an empty position (or the latest snapshot when
DATABASE_URL is set), optionally funds it and provides liquidity, seeds the
reference price from the oracle and then ticks until stopped.

Usage:
    python scripts/run_engine.py [--interval 60] [--mode interval|upkeep] [--iterations N]
                                 [--price 200000000000] [--fund-a N --fund-b N] [--provide]

Environment:
    REBALANCER_OPERATOR - Required. Operator identity.
    REBALANCER_MAX_ORDER_SIZE - Required. Largest single trade or liquidity amount.
    REBALANCER_*        - Policy and router settings (see rebalancer/config.py)
    DATABASE_URL        - Optional. Persist events and position snapshots.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from pathlib import Path

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from rebalancer.config import EngineConfig  # noqa: E402
from rebalancer.engine import LiquidityEngine, create_paper_engine  # noqa: E402
from rebalancer.errors import InvalidInput  # noqa: E402
from rebalancer.storage.noop_stores import MemoryEventStore, MemoryPositionStore  # noqa: E402
from rebalancer.storage.postgres.config import PostgresConfig  # noqa: E402
from rebalancer.storage.postgres.stores import PostgresStores  # noqa: E402

logger = logging.getLogger("run_engine")


def build_engine(args: argparse.Namespace) -> LiquidityEngine:
    config = EngineConfig.from_env()
    scheduler = dataclasses.replace(
        config.scheduler,
        poll_interval=args.interval if args.interval is not None else config.scheduler.poll_interval,
        trigger_mode=args.mode or config.scheduler.trigger_mode,
        max_iterations=args.iterations,
    )
    config = dataclasses.replace(config, scheduler=scheduler)

    if os.environ.get("DATABASE_URL"):
        stores = PostgresStores(config=PostgresConfig.from_env())
        return create_paper_engine(config, price=args.price, event_store=stores, snapshot_store=stores)
    return create_paper_engine(
        config,
        price=args.price,
        event_store=MemoryEventStore(),
        snapshot_store=MemoryPositionStore(),
    )


async def prepare(engine: LiquidityEngine, args: argparse.Namespace) -> bool:
    """Fund, provide and seed the engine. Returns False when a step is rejected."""
    operator = engine.config.operator
    asset_a, asset_b = engine.config.assets[0], engine.config.assets[1]

    try:
        if args.fund_a:
            await engine.deposit(operator, asset_a, args.fund_a)
        if args.fund_b:
            await engine.deposit(operator, asset_b, args.fund_b)
        if args.provide and args.fund_a and args.fund_b:
            result = await engine.provide_liquidity(operator, args.fund_a, args.fund_b)
            logger.info(f"Provide liquidity: {result.status} ({result.reason})")
    except InvalidInput as exc:
        logger.error(f"Preparation rejected: {exc}")
        return False

    if engine.position.last_reference_price == 0:
        result = await engine.rebalance_now(operator)
        logger.info(f"Seeded reference price: {result.price}")
    return True


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run the liquidity rebalancing scheduler (paper)")
    parser.add_argument("--interval", type=float, help="Poll interval in seconds")
    parser.add_argument("--mode", choices=["interval", "upkeep"], help="Trigger mode")
    parser.add_argument("--iterations", type=int, help="Max iterations (default: infinite)")
    parser.add_argument("--price", type=int, default=0, help="Static oracle price (8 decimals)")
    parser.add_argument("--fund-a", type=int, default=0, help="Deposit this much of the first asset")
    parser.add_argument("--fund-b", type=int, default=0, help="Deposit this much of the second asset")
    parser.add_argument("--provide", action="store_true", help="Provide the deposited funds as liquidity")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        engine = build_engine(args)
    except (RuntimeError, InvalidInput) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if not await prepare(engine, args):
        return 1
    await engine.scheduler.run(engine.config.operator)

    logger.info(f"Final position: {engine.position.to_dict()}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
