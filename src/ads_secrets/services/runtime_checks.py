from __future__ import annotations

import logging

from ads_secrets.config.settings import Settings
from ads_secrets.security.keyring import KeyRing
from ads_secrets.services.redis_store import KVStore, RedisStore
from ads_secrets.services.secrets_repository import SecretsRepository

logger = logging.getLogger(__name__)


def run_startup_checks(settings: Settings) -> KeyRing:
    """Load the master key ring, raising ConfigurationError when key material is missing or weak."""
    keyring = KeyRing.from_settings(settings)
    if len(keyring) > 1:
        logger.info("Retired key ids still accepted for decryption: %s", keyring.key_ids[:-1])
    return keyring


def build_repository(settings: Settings, store: KVStore | None = None) -> SecretsRepository:
    keyring = run_startup_checks(settings)
    if store is None:
        store = RedisStore.from_url(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout_seconds,
        )
    return SecretsRepository(store, keyring, prefix=settings.kv_prefix)
