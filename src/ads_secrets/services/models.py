from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ads_secrets.security.envelope import EncryptedEnvelope


class _StoredRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# --- Stored shapes (what goes into the key-value store) ---


class AppConfigRecord(_StoredRecord):
    app_id: str = Field(alias="appId")
    secret_enc: EncryptedEnvelope = Field(alias="secretEnc")
    updated_at: int = Field(alias="updatedAt")


class TenantTokenRecord(_StoredRecord):
    token_enc: EncryptedEnvelope = Field(alias="tokenEnc")
    expires_at: int = Field(alias="expiresAt")
    updated_at: int = Field(alias="updatedAt")


class TenantSelectionRecord(_StoredRecord):
    business_id: str | None = Field(default=None, alias="businessId")
    ad_account_id: str = Field(alias="adAccountId")
    currency: str | None = None
    timezone: str | None = None
    updated_at: int = Field(alias="updatedAt")


# --- Plaintext shapes handed to callers ---


class AppConfig(BaseModel):
    app_id: str
    app_secret: str = Field(repr=False)


class TenantToken(BaseModel):
    access_token: str = Field(repr=False)
    token_type: str | None = None


class TenantSelection(BaseModel):
    business_id: str | None = None
    ad_account_id: str
    currency: str | None = None
    timezone: str | None = None
