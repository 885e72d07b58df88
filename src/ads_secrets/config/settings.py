from functools import lru_cache
import json

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_socket_timeout_seconds: float = Field(default=5.0)
    kv_prefix: str = Field(default="", description="Namespace prepended to every storage key")

    # Master key material. Never logged.
    master_key_current: str = Field(default="", repr=False)
    master_key_id: str = Field(default="v1")
    master_keys_previous: str = Field(
        default="{}",
        repr=False,
        description="JSON object of retired key ids to secrets, still accepted for decryption",
    )

    @model_validator(mode="after")
    def validate_key_config(self) -> "Settings":
        if not self.master_key_id.strip():
            raise ValueError("MASTER_KEY_ID must not be blank")

        if self.redis_socket_timeout_seconds <= 0:
            raise ValueError("REDIS_SOCKET_TIMEOUT_SECONDS must be positive")

        if self.master_keys_previous:
            try:
                previous = json.loads(self.master_keys_previous)
            except Exception as exc:
                raise ValueError("MASTER_KEYS_PREVIOUS must be valid JSON") from exc
            if not isinstance(previous, dict):
                raise ValueError("MASTER_KEYS_PREVIOUS must be a JSON object")
            for key_id, secret in previous.items():
                if not isinstance(secret, str):
                    raise ValueError(f"MASTER_KEYS_PREVIOUS entry {key_id!r} must be a string")
            if self.master_key_id in previous:
                raise ValueError("MASTER_KEYS_PREVIOUS must not contain the current MASTER_KEY_ID")

        return self

    def previous_keys(self) -> dict[str, str]:
        if not self.master_keys_previous:
            return {}
        return dict(json.loads(self.master_keys_previous))


@lru_cache
def get_settings() -> Settings:
    return Settings()
