"""Identity engine configuration."""

from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

MIN_SECRET_LENGTH = 32


class IdentityConfig(BaseModel):
    """
    Identity engine configuration.

    All durations are in their natural units (minutes for short durations,
    hours or days for longer ones) to make configuration intuitive. Invalid
    values fail at construction, which happens once at startup.
    """

    # Signing secrets (loaded from Vault in production)
    access_token_secret: str = Field(
        ...,
        description="HS256 secret for access tokens",
        repr=False,
    )
    refresh_token_secret: str = Field(
        ...,
        description="HS256 secret for refresh tokens; must differ from the access secret",
        repr=False,
    )

    # Token lifetimes
    access_token_ttl_minutes: int = Field(
        default=15,
        description="Access token lifetime",
        ge=1,
        le=1440,
    )
    refresh_token_ttl_days: int = Field(
        default=7,
        description="Refresh token lifetime",
        ge=1,
        le=90,
    )
    password_reset_ttl_minutes: int = Field(
        default=60,
        description="Password reset token lifetime",
        ge=5,
        le=1440,
    )
    email_verification_ttl_hours: int = Field(
        default=24,
        description="Email verification token lifetime",
        ge=1,
        le=168,
    )
    rotate_refresh_tokens: bool = Field(
        default=False,
        description="Issue a new refresh token on every refresh and revoke the old one",
    )

    # Lockout
    lockout_threshold: int = Field(
        default=5,
        description="Consecutive failed logins before the account locks",
        ge=1,
        le=100,
    )
    lockout_duration_minutes: int = Field(
        default=120,
        description="How long a locked account stays locked",
        ge=1,
        le=10080,
    )

    # Password hashing
    bcrypt_rounds: int = Field(
        default=12,
        description="bcrypt work factor (log2 of iterations)",
        ge=4,
        le=16,
    )

    # Storage
    storage_backend: Literal["postgres", "memory"] = Field(
        default="postgres",
        description="Storage adapter chosen once at startup",
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for links in emails",
    )

    @field_validator("access_token_secret", "refresh_token_secret")
    @classmethod
    def _secret_long_enough(cls, value: str) -> str:
        if len(value) < MIN_SECRET_LENGTH:
            raise ValueError(f"signing secrets must be at least {MIN_SECRET_LENGTH} characters")
        return value

    @model_validator(mode="after")
    def _secrets_distinct(self) -> "IdentityConfig":
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("access and refresh signing secrets must differ")
        return self

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_ttl_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_token_ttl_days)

    @property
    def password_reset_ttl(self) -> timedelta:
        return timedelta(minutes=self.password_reset_ttl_minutes)

    @property
    def email_verification_ttl(self) -> timedelta:
        return timedelta(hours=self.email_verification_ttl_hours)

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(minutes=self.lockout_duration_minutes)
