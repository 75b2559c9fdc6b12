#!/usr/bin/env python3
"""Run the FastAPI operator API server.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT]

Environment:
    REBALANCER_OPERATOR - Required. Operator identity expected in X-Operator.
    REBALANCER_MAX_ORDER_SIZE - Required. Largest single trade or liquidity amount.
    DATABASE_URL        - Optional. PostgreSQL connection string for the audit trail.

Examples:
    python scripts/run_api.py
    python scripts/run_api.py --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import uvicorn

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def main() -> int:
    """Run the API server."""
    parser = argparse.ArgumentParser(description="Run the FastAPI operator API for the rebalancing engine.")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    args = parser.parse_args()

    if not os.environ.get("REBALANCER_OPERATOR"):
        print("Error: REBALANCER_OPERATOR environment variable is required", file=sys.stderr)
        return 1
    if not os.environ.get("REBALANCER_MAX_ORDER_SIZE"):
        print("Error: REBALANCER_MAX_ORDER_SIZE environment variable is required", file=sys.stderr)
        return 1
    if not os.environ.get("DATABASE_URL"):
        print("DATABASE_URL not set: events are kept in memory only")

    print(f"Starting FastAPI server on {args.host}:{args.port}")
    print("Endpoints:")
    print(f"  - GET  http://{args.host}:{args.port}/health")
    print(f"  - GET  http://{args.host}:{args.port}/position")
    print(f"  - POST http://{args.host}:{args.port}/tick")
    print()

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
