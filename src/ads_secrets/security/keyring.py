from __future__ import annotations

import hashlib
import logging
from typing import Iterable

from ads_secrets.config.settings import Settings
from ads_secrets.security.errors import ConfigurationError, UnknownKeyId

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
MIN_SECRET_LENGTH = 10


def derive_key(secret: str) -> bytes:
    """SHA-256 of the operator secret, so a passphrase of any length yields an AES-256 key."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


class KeyRing:
    """Ordered set of master keys, oldest first.

    The newest key encrypts; any held key decrypts envelopes tagged with its id.
    """

    def __init__(self, keys: dict[str, bytes]) -> None:
        if not keys:
            raise ConfigurationError("Key ring needs at least one master key")
        for key_id, key in keys.items():
            if not key_id:
                raise ConfigurationError("Master key id must not be empty")
            if len(key) != KEY_LENGTH:
                raise ConfigurationError(f"Master key '{key_id}' must be {KEY_LENGTH} bytes")
        self._keys = dict(keys)
        self._active_key_id = list(self._keys)[-1]

    @classmethod
    def from_secrets(cls, secrets: Iterable[tuple[str, str]]) -> "KeyRing":
        keys: dict[str, bytes] = {}
        for key_id, secret in secrets:
            if key_id in keys:
                raise ConfigurationError(f"Duplicate master key id '{key_id}'")
            if not secret or len(secret) < MIN_SECRET_LENGTH:
                raise ConfigurationError(
                    f"Master key '{key_id}' is missing or shorter than {MIN_SECRET_LENGTH} characters"
                )
            keys[key_id] = derive_key(secret)
        return cls(keys)

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyRing":
        if not settings.master_key_current:
            raise ConfigurationError("MASTER_KEY_CURRENT is not set; refusing to start without a master key")
        secrets = list(settings.previous_keys().items())
        secrets.append((settings.master_key_id, settings.master_key_current))
        ring = cls.from_secrets(secrets)
        logger.info("Loaded %d master key(s), active key id %s", len(ring), ring.active_key_id)
        return ring

    @property
    def active_key_id(self) -> str:
        return self._active_key_id

    @property
    def active_key(self) -> bytes:
        return self._keys[self._active_key_id]

    @property
    def key_ids(self) -> list[str]:
        return list(self._keys)

    def get(self, key_id: str) -> bytes:
        try:
            return self._keys[key_id]
        except KeyError:
            raise UnknownKeyId(key_id) from None

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"KeyRing(key_ids={self.key_ids!r}, active={self._active_key_id!r})"
