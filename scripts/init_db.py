from __future__ import annotations

import argparse
import asyncio
import sys

from pulsewatch.core.config import get_settings
from pulsewatch.persistence.db import create_schema, get_engine


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create the tenant_kv table for local development")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    return parser


async def _init(database_url: str) -> int:
    engine = get_engine(database_url)
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
    print(f"tenant_kv ready on {engine.url.render_as_string(hide_password=True)}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    database_url = args.database_url or get_settings().database_url
    try:
        return asyncio.run(_init(database_url))
    except Exception as exc:  # noqa: BLE001 - surface setup failures clearly
        print(f"init_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
