from __future__ import annotations


class SecretsStoreError(Exception):
    pass


class ConfigurationError(SecretsStoreError):
    """Master key material is missing or unusable."""


class StorageError(SecretsStoreError):
    """The key-value backend is unreachable or rejected the operation."""


class EnvelopeError(SecretsStoreError):
    """Base class for every failure to open an encrypted envelope."""

    reason = "envelope_error"


class UnknownKeyId(EnvelopeError):
    reason = "unknown_key_id"

    def __init__(self, key_id: str) -> None:
        super().__init__(f"Unknown or rotated key id '{key_id}'")
        self.key_id = key_id


class MalformedEnvelope(EnvelopeError):
    reason = "malformed_envelope"


class AuthenticationFailure(EnvelopeError):
    reason = "authentication_failure"


class DeserializationFailure(EnvelopeError):
    reason = "deserialization_failure"


class SerializationFailure(ValueError):
    """Plaintext handed to encrypt cannot be serialized to JSON."""


def classify_decrypt_failure(exc: EnvelopeError) -> dict[str, str]:
    """Structured fields describing why an envelope could not be opened."""
    details = {"reason": exc.reason}
    if isinstance(exc, UnknownKeyId):
        details["key_id"] = exc.key_id
    cause = exc.__cause__
    if cause is not None:
        details["cause"] = type(cause).__name__
    return details
