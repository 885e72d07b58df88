#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ads_secrets.config.settings import Settings, get_settings
from ads_secrets.services.models import TenantSelection
from ads_secrets.services.redis_store import InMemoryStore
from ads_secrets.services.runtime_checks import build_repository
from ads_secrets.services.secrets_repository import SecretsRepository

DEV_MASTER_KEY = "my_super_secure_development_secret_key_123"


def expect(cond: bool, message: str) -> None:
    if not cond:
        raise RuntimeError(message)


async def run_demo(settings: Settings, tenant_id: str, in_memory: bool) -> None:
    store = InMemoryStore() if in_memory else None
    repo = build_repository(settings, store=store)
    try:
        await walk_through(repo, tenant_id)
    finally:
        await repo.close()


async def walk_through(repo: SecretsRepository, tenant_id: str) -> None:
    print("--- 1. Admin: global app config ---")
    await repo.put_app_config("1234567890", "sk_live_very_secret_app_key")
    app_config = await repo.get_app_config()
    expect(app_config is not None, "app config not readable after write")
    print(f"   App ID: {app_config.app_id}")
    print(f"   App Secret: {app_config.app_secret[:4]}...******")

    print("--- 2. Tenant: OAuth token ---")
    expires_at = int(time.time() * 1000) + 3600 * 1000
    await repo.put_tenant_token(tenant_id, "EAAB...sensitive_access_token_value...", "bearer", expires_at=expires_at)
    token = await repo.get_tenant_token(tenant_id)
    expect(token is not None, "token not readable after write")
    print(f"   Access Token: {token.access_token[:10]}...")

    print("--- 3. Tenant: selected ad account (plaintext) ---")
    await repo.put_tenant_selection(
        tenant_id,
        TenantSelection(
            business_id="bm_999888",
            ad_account_id="act_555444",
            currency="BRL",
            timezone="America/Sao_Paulo",
        ),
    )
    selection = await repo.get_tenant_selection(tenant_id)
    expect(selection is not None, "selection not readable after write")
    print(f"   Selection: {selection.model_dump()}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Walk through the encrypted secrets store")
    parser.add_argument("--tenant-id", default="ws_demo_123")
    parser.add_argument("--in-memory", action="store_true", help="Use the in-memory store instead of Redis")
    parser.add_argument(
        "--dev-key",
        action="store_true",
        help="Use a fixed development master key when MASTER_KEY_CURRENT is unset",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = get_settings()
    if args.dev_key and not settings.master_key_current:
        settings = settings.model_copy(update={"master_key_current": DEV_MASTER_KEY, "master_key_id": "v1"})

    asyncio.run(run_demo(settings, args.tenant_id, args.in_memory))
    print("PASS: secrets store demo completed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
