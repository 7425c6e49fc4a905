"""Check Inventory Planner credentials and connectivity."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime
from typing import Iterable, Optional

from planner_sync.config import ConfigurationError, PlannerCredentials

from .client import InventoryPlannerClient

LOGGER = logging.getLogger(__name__)


async def diagnose(credentials: PlannerCredentials, *, client: Optional[InventoryPlannerClient] = None) -> dict:
    client = client or InventoryPlannerClient(credentials)
    report = await client.check_connection()
    return {
        "timestamp": datetime.now().isoformat(),
        "success": report.ok,
        "environment": credentials.redacted(),
        "connection": report.to_dict(),
    }


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Test the Inventory Planner API connection")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return parser.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        credentials = PlannerCredentials.from_env()
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        print(json.dumps({"success": False, "error": str(exc), "missing": exc.missing}, indent=2))
        return 2

    result = asyncio.run(diagnose(credentials))
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0 if result["success"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
