#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ads_secrets.config.settings import get_settings
from ads_secrets.services.runtime_checks import build_repository


async def rewrap(tenant_ids: list[str]) -> dict:
    repo = build_repository(get_settings())
    try:
        summary = {"app_config": await repo.rewrap_app_config(), "tenants": {}}
        for tenant_id in tenant_ids:
            summary["tenants"][tenant_id] = await repo.rewrap_tenant_token(tenant_id)
        return summary
    finally:
        await repo.close()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Re-encrypt stored secrets under the active master key after a rotation",
    )
    parser.add_argument("tenant_ids", nargs="*", help="tenant ids whose tokens should be rewrapped")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    summary = asyncio.run(rewrap(args.tenant_ids))
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:
        print(f"REWRAP FAILED: {exc}", file=sys.stderr)
        raise
