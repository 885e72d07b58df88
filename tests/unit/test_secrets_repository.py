"""Secrets repository: field split, TTL handling, fail-closed decrypt."""

import asyncio
import base64
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from ads_secrets.security.errors import StorageError
from ads_secrets.services.models import TenantSelection
from ads_secrets.services.redis_store import InMemoryStore, KVStore, RedisStore
from ads_secrets.services.secrets_repository import SecretsRepository, ttl_seconds_until

REPO_LOGGER = "ads_secrets.services.secrets_repository"


def test_ttl_seconds_until() -> None:
    assert ttl_seconds_until(10_000, 0) == 10
    assert ttl_seconds_until(10_999, 0) == 10
    assert ttl_seconds_until(1000, 0) == 1
    assert ttl_seconds_until(500, 0) == 1
    assert ttl_seconds_until(0, 0) == 1
    assert ttl_seconds_until(-60_000, 0) == 1


def test_app_config_roundtrip(repo, store) -> None:
    asyncio.run(repo.put_app_config("app123", "topsecret"))

    config = asyncio.run(repo.get_app_config())
    assert config is not None
    assert config.app_id == "app123"
    assert config.app_secret == "topsecret"

    raw = json.loads(store.raw("meta_app_config"))
    assert raw["appId"] == "app123"
    assert raw["secretEnc"]["keyId"] == "v1"
    assert raw["updatedAt"] == 1_700_000_000_000
    assert "topsecret" not in store.raw("meta_app_config")
    assert store.ttl_ms("meta_app_config") is None


def test_app_config_absent_returns_none(repo) -> None:
    assert asyncio.run(repo.get_app_config()) is None


def test_app_config_secret_not_in_repr(repo) -> None:
    asyncio.run(repo.put_app_config("app123", "topsecret"))
    config = asyncio.run(repo.get_app_config())
    assert "topsecret" not in repr(config)


def test_tenant_token_roundtrip_and_ttl(repo, store, clock) -> None:
    expires_at = clock() + 3600 * 1000
    asyncio.run(repo.put_tenant_token("ws_1", "EAAB_token", "bearer", expires_at=expires_at))

    token = asyncio.run(repo.get_tenant_token("ws_1"))
    assert token is not None
    assert token.access_token == "EAAB_token"
    assert token.token_type == "bearer"

    raw = json.loads(store.raw("meta_token:ws_1"))
    assert raw["expiresAt"] == expires_at
    assert set(raw) == {"tokenEnc", "expiresAt", "updatedAt"}
    assert store.ttl_ms("meta_token:ws_1") == 3600 * 1000


def test_tenant_token_without_type(repo, clock) -> None:
    asyncio.run(repo.put_tenant_token("ws_1", "EAAB_token", expires_at=clock() + 60_000))
    token = asyncio.run(repo.get_tenant_token("ws_1"))
    assert token is not None
    assert token.token_type is None


def test_tenant_token_expires_after_deadline(repo, clock) -> None:
    asyncio.run(repo.put_tenant_token("ws_1", "short_lived", expires_at=clock() + 1000))
    assert asyncio.run(repo.get_tenant_token("ws_1")) is not None

    clock.advance(1100)
    assert asyncio.run(repo.get_tenant_token("ws_1")) is None


def test_tenant_token_in_past_is_stored_but_absent(repo, store, clock) -> None:
    asyncio.run(repo.put_tenant_token("ws_1", "already_gone", expires_at=clock() - 5000))

    assert store.raw("meta_token:ws_1") is not None
    assert store.ttl_ms("meta_token:ws_1") == 1000
    assert asyncio.run(repo.get_tenant_token("ws_1")) is None


def test_expired_token_is_not_decrypted(repo, store, clock, caplog) -> None:
    """Backend still holds the record but expiresAt has passed: absent, no decrypt attempted."""
    asyncio.run(
        store.set_json(
            "meta_token:ws_1",
            {
                "tokenEnc": {"keyId": "v1", "payload": "AAAA"},
                "expiresAt": clock() - 1,
                "updatedAt": clock() - 10_000,
            },
        )
    )
    with caplog.at_level(logging.WARNING, logger=REPO_LOGGER):
        assert asyncio.run(repo.get_tenant_token("ws_1")) is None
    assert caplog.records == []


def test_corrupted_token_logs_and_returns_none(repo, store, clock, caplog) -> None:
    asyncio.run(repo.put_tenant_token("ws_1", "EAAB_token", expires_at=clock() + 60_000))

    raw = asyncio.run(store.get_json("meta_token:ws_1"))
    blob = bytearray(base64.b64decode(raw["tokenEnc"]["payload"]))
    blob[-1] ^= 0xFF
    raw["tokenEnc"]["payload"] = base64.b64encode(bytes(blob)).decode()
    asyncio.run(store.set_json("meta_token:ws_1", raw))

    with caplog.at_level(logging.WARNING, logger=REPO_LOGGER):
        assert asyncio.run(repo.get_tenant_token("ws_1")) is None

    [record] = caplog.records
    assert record.record_kind == "tenant_token"
    assert record.record_id == "ws_1"
    assert record.reason == "authentication_failure"
    assert "EAAB_token" not in record.getMessage()


def test_unknown_key_id_logged_with_key_id(repo, store, caplog) -> None:
    asyncio.run(repo.put_app_config("app123", "topsecret"))
    raw = asyncio.run(store.get_json("meta_app_config"))
    raw["secretEnc"]["keyId"] = "v0"
    asyncio.run(store.set_json("meta_app_config", raw))

    with caplog.at_level(logging.WARNING, logger=REPO_LOGGER):
        assert asyncio.run(repo.get_app_config()) is None

    [record] = caplog.records
    assert record.record_kind == "app_config"
    assert record.reason == "unknown_key_id"
    assert record.key_id == "v0"


def test_record_with_wrong_shape_is_malformed(repo, store, caplog) -> None:
    asyncio.run(store.set_json("meta_app_config", {"appId": "app123", "secretEnc": "plaintext?"}))

    with caplog.at_level(logging.WARNING, logger=REPO_LOGGER):
        assert asyncio.run(repo.get_app_config()) is None
    assert caplog.records[0].reason == "malformed_envelope"


def test_decrypted_payload_missing_field_is_absent(repo, store, clock, caplog) -> None:
    envelope = repo._codec.encrypt({"somethingElse": 1})
    asyncio.run(
        store.set_json(
            "meta_app_config",
            {"appId": "app123", "secretEnc": envelope.to_record(), "updatedAt": clock()},
        )
    )
    with caplog.at_level(logging.WARNING, logger=REPO_LOGGER):
        assert asyncio.run(repo.get_app_config()) is None
    assert caplog.records[0].reason == "deserialization_failure"


def test_selection_stored_as_plaintext(repo, store) -> None:
    selection = TenantSelection(
        business_id="bm_999888",
        ad_account_id="act_555444",
        currency="BRL",
        timezone="America/Sao_Paulo",
    )
    asyncio.run(repo.put_tenant_selection("ws_1", selection))

    raw_text = store.raw("meta_selected:ws_1")
    assert "act_555444" in raw_text
    assert "America/Sao_Paulo" in raw_text
    raw = json.loads(raw_text)
    assert raw["businessId"] == "bm_999888"
    assert raw["adAccountId"] == "act_555444"
    assert store.ttl_ms("meta_selected:ws_1") is None

    loaded = asyncio.run(repo.get_tenant_selection("ws_1"))
    assert loaded is not None
    assert loaded.ad_account_id == "act_555444"
    assert loaded.currency == "BRL"


def test_selection_last_write_wins(repo, store, clock) -> None:
    asyncio.run(repo.put_tenant_selection("ws_1", TenantSelection(ad_account_id="act_1")))
    clock.advance(10)
    asyncio.run(repo.put_tenant_selection("ws_1", TenantSelection(ad_account_id="act_2", business_id=None)))

    loaded = asyncio.run(repo.get_tenant_selection("ws_1"))
    assert loaded == TenantSelection(ad_account_id="act_2")
    assert json.loads(store.raw("meta_selected:ws_1"))["updatedAt"] == clock()


def test_selection_absent_returns_none(repo) -> None:
    assert asyncio.run(repo.get_tenant_selection("ws_missing")) is None


def test_selection_read_back_as_tenant_selection(repo) -> None:
    asyncio.run(repo.put_tenant_selection("ws_1", TenantSelection(ad_account_id="act_1", currency="USD")))

    loaded = asyncio.run(repo.get_tenant_selection("ws_1"))
    assert type(loaded) is TenantSelection
    assert loaded == TenantSelection(ad_account_id="act_1", currency="USD")


def test_malformed_selection_raises_storage_error(repo, store) -> None:
    """A plaintext record missing required fields is not masked as absent."""
    asyncio.run(store.set_json("meta_selected:ws_1", {"businessId": "bm_1"}))

    with pytest.raises(StorageError) as exc_info:
        asyncio.run(repo.get_tenant_selection("ws_1"))
    assert isinstance(exc_info.value.__cause__, ValidationError)


def test_tenants_are_isolated(repo, clock) -> None:
    asyncio.run(repo.put_tenant_token("ws_a", "token_a", expires_at=clock() + 60_000))
    asyncio.run(repo.put_tenant_token("ws_b", "token_b", expires_at=clock() + 60_000))

    assert asyncio.run(repo.get_tenant_token("ws_a")).access_token == "token_a"
    assert asyncio.run(repo.get_tenant_token("ws_b")).access_token == "token_b"
    assert asyncio.run(repo.get_tenant_token("ws_c")) is None


def test_delete_and_purge_tenant(repo, clock) -> None:
    asyncio.run(repo.put_tenant_token("ws_1", "token", expires_at=clock() + 60_000))
    asyncio.run(repo.put_tenant_selection("ws_1", TenantSelection(ad_account_id="act_1")))

    assert asyncio.run(repo.delete_tenant_token("ws_1")) is True
    assert asyncio.run(repo.delete_tenant_token("ws_1")) is False
    assert asyncio.run(repo.purge_tenant("ws_1")) == 1
    assert asyncio.run(repo.get_tenant_selection("ws_1")) is None


def test_prefix_namespaces_keys(store, keyring, clock) -> None:
    repo = SecretsRepository(store, keyring, clock=clock, prefix="ads:")
    asyncio.run(repo.put_app_config("app123", "topsecret"))
    assert store.raw("ads:meta_app_config") is not None
    assert store.raw("meta_app_config") is None


class _FailingStore(KVStore):
    async def get_json(self, key):
        raise StorageError("backend unreachable")

    async def set_json(self, key, value, ttl_seconds=None):
        raise StorageError("backend unreachable")

    async def delete(self, *keys):
        raise StorageError("backend unreachable")


def test_storage_errors_propagate(keyring, clock) -> None:
    repo = SecretsRepository(_FailingStore(), keyring, clock=clock)

    with pytest.raises(StorageError):
        asyncio.run(repo.get_app_config())
    with pytest.raises(StorageError):
        asyncio.run(repo.put_tenant_token("ws_1", "token", expires_at=clock() + 1000))
    with pytest.raises(StorageError):
        asyncio.run(repo.get_tenant_token("ws_1"))
    with pytest.raises(StorageError):
        asyncio.run(repo.purge_tenant("ws_1"))


def test_corrupt_stored_json_propagates_as_storage_error(keyring, clock) -> None:
    client = MagicMock()
    client.get = AsyncMock(return_value="{corrupt")
    repo = SecretsRepository(RedisStore(client), keyring, clock=clock)

    with pytest.raises(StorageError):
        asyncio.run(repo.get_app_config())
    with pytest.raises(StorageError):
        asyncio.run(repo.get_tenant_token("ws_1"))


def test_close_releases_redis_client(keyring, clock) -> None:
    client = MagicMock()
    client.aclose = AsyncMock()
    repo = SecretsRepository(RedisStore(client), keyring, clock=clock)

    asyncio.run(repo.close())
    client.aclose.assert_awaited_once()


def test_close_on_in_memory_store_is_noop(repo, store) -> None:
    asyncio.run(repo.put_app_config("app123", "topsecret"))
    asyncio.run(repo.close())
    assert store.raw("meta_app_config") is not None
