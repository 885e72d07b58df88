"""Authenticated envelope encryption for JSON values.

Payload layout, base64 encoded: IV (12 bytes) || tag (16 bytes) || ciphertext.
AES-256-GCM is used so that any tampering or a wrong key fails loudly instead
of yielding garbage that would later be parsed as credentials.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ConfigDict, Field

from ads_secrets.security.errors import (
    AuthenticationFailure,
    DeserializationFailure,
    MalformedEnvelope,
    SerializationFailure,
)
from ads_secrets.security.keyring import KeyRing

IV_LENGTH = 12
TAG_LENGTH = 16
MIN_PAYLOAD_LENGTH = IV_LENGTH + TAG_LENGTH


class EncryptedEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key_id: str = Field(alias="keyId", min_length=1)
    payload: str

    def to_record(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class EnvelopeCodec:
    def __init__(self, keyring: KeyRing) -> None:
        self._keyring = keyring

    @property
    def keyring(self) -> KeyRing:
        return self._keyring

    def encrypt(self, plaintext: Any) -> EncryptedEnvelope:
        try:
            raw = json.dumps(plaintext, ensure_ascii=False, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise SerializationFailure(f"Plaintext is not JSON-serializable: {exc}") from exc

        key_id = self._keyring.active_key_id
        iv = os.urandom(IV_LENGTH)
        # AESGCM appends the tag to the ciphertext.
        sealed = AESGCM(self._keyring.active_key).encrypt(iv, raw, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        blob = base64.b64encode(iv + tag + ciphertext).decode("ascii")
        return EncryptedEnvelope(key_id=key_id, payload=blob)

    def decrypt(self, envelope: EncryptedEnvelope) -> Any:
        key = self._keyring.get(envelope.key_id)

        try:
            blob = base64.b64decode(envelope.payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedEnvelope("Envelope payload is not valid base64") from exc

        if len(blob) < MIN_PAYLOAD_LENGTH:
            raise MalformedEnvelope(
                f"Envelope payload is {len(blob)} bytes, expected at least {MIN_PAYLOAD_LENGTH}"
            )

        iv = blob[:IV_LENGTH]
        tag = blob[IV_LENGTH:MIN_PAYLOAD_LENGTH]
        ciphertext = blob[MIN_PAYLOAD_LENGTH:]

        try:
            raw = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise AuthenticationFailure("Envelope failed authentication (tampered data or wrong key)") from exc

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DeserializationFailure("Decrypted envelope is not valid JSON") from exc
