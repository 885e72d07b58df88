from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from ads_secrets.security.envelope import EncryptedEnvelope, EnvelopeCodec
from ads_secrets.security.errors import (
    DeserializationFailure,
    EnvelopeError,
    MalformedEnvelope,
    StorageError,
    classify_decrypt_failure,
)
from ads_secrets.security.keyring import KeyRing
from ads_secrets.services.models import (
    AppConfig,
    AppConfigRecord,
    TenantSelection,
    TenantSelectionRecord,
    TenantToken,
    TenantTokenRecord,
)
from ads_secrets.services.redis_store import Clock, KVStore, system_clock_ms

logger = logging.getLogger(__name__)

APP_CONFIG_KEY = "meta_app_config"
TOKEN_PREFIX = "meta_token:"
SELECTION_PREFIX = "meta_selected:"

KIND_APP_CONFIG = "app_config"
KIND_TENANT_TOKEN = "tenant_token"


def ttl_seconds_until(expires_at: int, now: int) -> int:
    """Remaining whole seconds before expires_at, never below 1 so the backend accepts it."""
    return max(1, (expires_at - now) // 1000)


class SecretsRepository:
    """Persists ads-platform credentials, encrypting the sensitive fields of each record.

    Decrypt failures are logged and reported as absent records. Storage errors
    propagate to the caller.
    """

    def __init__(
        self,
        store: KVStore,
        keyring: KeyRing,
        clock: Clock | None = None,
        prefix: str = "",
    ) -> None:
        self._store = store
        self._codec = EnvelopeCodec(keyring)
        self._clock = clock or system_clock_ms
        self._prefix = prefix

    # --- storage keys ---

    def _app_config_key(self) -> str:
        return f"{self._prefix}{APP_CONFIG_KEY}"

    def _token_key(self, tenant_id: str) -> str:
        return f"{self._prefix}{TOKEN_PREFIX}{tenant_id}"

    def _selection_key(self, tenant_id: str) -> str:
        return f"{self._prefix}{SELECTION_PREFIX}{tenant_id}"

    # --- app config ---

    async def put_app_config(self, app_id: str, app_secret: str) -> None:
        record = AppConfigRecord(
            app_id=app_id,
            secret_enc=self._codec.encrypt({"appSecret": app_secret}),
            updated_at=self._clock(),
        )
        await self._store.set_json(self._app_config_key(), record.to_record())
        logger.info("Stored app config for app %s", app_id)

    async def get_app_config(self) -> AppConfig | None:
        raw = await self._store.get_json(self._app_config_key())
        if raw is None:
            return None
        try:
            record = self._parse(AppConfigRecord, raw)
            secret = self._open(record.secret_enc, "appSecret")
            return AppConfig(app_id=record.app_id, app_secret=secret["appSecret"])
        except EnvelopeError as exc:
            self._log_decrypt_failure(KIND_APP_CONFIG, APP_CONFIG_KEY, exc)
            return None

    async def rewrap_app_config(self) -> bool:
        """Re-encrypt the app secret under the active key if it was sealed with an older one."""
        raw = await self._store.get_json(self._app_config_key())
        if raw is None:
            return False
        try:
            record = self._parse(AppConfigRecord, raw)
            if record.secret_enc.key_id == self._codec.keyring.active_key_id:
                return False
            secret = self._open(record.secret_enc, "appSecret")
        except EnvelopeError as exc:
            self._log_decrypt_failure(KIND_APP_CONFIG, APP_CONFIG_KEY, exc)
            return False

        old_key_id = record.secret_enc.key_id
        record.secret_enc = self._codec.encrypt(secret)
        record.updated_at = self._clock()
        await self._store.set_json(self._app_config_key(), record.to_record())
        logger.warning(
            "Rewrapped app config from key %s to %s", old_key_id, record.secret_enc.key_id
        )
        return True

    # --- tenant tokens ---

    async def put_tenant_token(
        self,
        tenant_id: str,
        access_token: str,
        token_type: str | None = None,
        *,
        expires_at: int,
    ) -> None:
        sensitive: dict[str, Any] = {"accessToken": access_token}
        if token_type is not None:
            sensitive["tokenType"] = token_type

        now = self._clock()
        record = TenantTokenRecord(
            token_enc=self._codec.encrypt(sensitive),
            expires_at=expires_at,
            updated_at=now,
        )
        ttl = ttl_seconds_until(expires_at, now)
        await self._store.set_json(self._token_key(tenant_id), record.to_record(), ttl_seconds=ttl)
        logger.info("Stored token for tenant %s (ttl %ss)", tenant_id, ttl)

    async def get_tenant_token(self, tenant_id: str) -> TenantToken | None:
        raw = await self._store.get_json(self._token_key(tenant_id))
        if raw is None:
            return None
        try:
            record = self._parse(TenantTokenRecord, raw)
            # Backend TTL may lag or the clocks may disagree.
            if self._clock() > record.expires_at:
                return None
            plain = self._open(record.token_enc, "accessToken")
            return TenantToken(
                access_token=plain["accessToken"],
                token_type=plain.get("tokenType"),
            )
        except EnvelopeError as exc:
            self._log_decrypt_failure(KIND_TENANT_TOKEN, tenant_id, exc)
            return None

    async def rewrap_tenant_token(self, tenant_id: str) -> bool:
        """Re-encrypt a tenant token under the active key, keeping its expiry."""
        raw = await self._store.get_json(self._token_key(tenant_id))
        if raw is None:
            return False
        try:
            record = self._parse(TenantTokenRecord, raw)
            now = self._clock()
            if now > record.expires_at:
                return False
            if record.token_enc.key_id == self._codec.keyring.active_key_id:
                return False
            plain = self._open(record.token_enc, "accessToken")
        except EnvelopeError as exc:
            self._log_decrypt_failure(KIND_TENANT_TOKEN, tenant_id, exc)
            return False

        old_key_id = record.token_enc.key_id
        record.token_enc = self._codec.encrypt(plain)
        record.updated_at = now
        await self._store.set_json(
            self._token_key(tenant_id),
            record.to_record(),
            ttl_seconds=ttl_seconds_until(record.expires_at, now),
        )
        logger.warning(
            "Rewrapped token for tenant %s from key %s to %s",
            tenant_id,
            old_key_id,
            record.token_enc.key_id,
        )
        return True

    async def delete_tenant_token(self, tenant_id: str) -> bool:
        deleted = await self._store.delete(self._token_key(tenant_id))
        return deleted > 0

    # --- tenant selection ---

    async def put_tenant_selection(self, tenant_id: str, selection: TenantSelection) -> None:
        record = TenantSelectionRecord(
            business_id=selection.business_id,
            ad_account_id=selection.ad_account_id,
            currency=selection.currency,
            timezone=selection.timezone,
            updated_at=self._clock(),
        )
        await self._store.set_json(self._selection_key(tenant_id), record.to_record())
        logger.info("Stored selection for tenant %s", tenant_id)

    async def get_tenant_selection(self, tenant_id: str) -> TenantSelection | None:
        """Stored selection for a tenant. A record that no longer matches the schema raises StorageError."""
        key = self._selection_key(tenant_id)
        raw = await self._store.get_json(key)
        if raw is None:
            return None
        try:
            record = TenantSelectionRecord.model_validate(raw)
        except ValidationError as exc:
            raise StorageError(f"Stored selection for {key} is malformed") from exc
        return TenantSelection(
            business_id=record.business_id,
            ad_account_id=record.ad_account_id,
            currency=record.currency,
            timezone=record.timezone,
        )

    # --- tenant lifecycle ---

    async def purge_tenant(self, tenant_id: str) -> int:
        """Delete every record held for a tenant. Returns count deleted."""
        count = await self._store.delete(self._token_key(tenant_id), self._selection_key(tenant_id))
        logger.info("Purged %d records for tenant %s", count, tenant_id)
        return count

    async def close(self) -> None:
        await self._store.close()

    # --- helpers ---

    @staticmethod
    def _parse(model: type[BaseModel], raw: dict) -> Any:
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            raise MalformedEnvelope(f"Stored record does not match {model.__name__}") from exc

    def _open(self, envelope: EncryptedEnvelope, required: str) -> dict[str, Any]:
        plain = self._codec.decrypt(envelope)
        if not isinstance(plain, dict) or not isinstance(plain.get(required), str):
            raise DeserializationFailure(f"Decrypted payload is missing {required}")
        return plain

    @staticmethod
    def _log_decrypt_failure(kind: str, record_id: str, exc: EnvelopeError) -> None:
        details = classify_decrypt_failure(exc)
        logger.warning(
            "Failed to decrypt %s %s: %s",
            kind,
            record_id,
            exc,
            extra={"record_kind": kind, "record_id": record_id, **details},
        )
