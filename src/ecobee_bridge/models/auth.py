"""Auth-related data models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class AuthState(str, Enum):
    """Derived authorization state. Never persisted."""
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_PIN = "awaiting_pin"
    AUTHENTICATED = "authenticated"


class ResponseAction(str, Enum):
    """What the auth manager did with an inline vendor status code."""
    OK = "ok"
    IGNORED = "ignored"
    REFRESHED = "refreshed"
    REFRESH_FAILED = "refresh_failed"
    REVOKED = "revoked"


class TokenPair(BaseModel):
    """Access/refresh tokens as stored in the token store."""
    access_token: str | None = None
    refresh_token: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.access_token is None and self.refresh_token is None


class PinResponse(BaseModel):
    """Response from the ecobee authorize endpoint (PIN request)."""
    pin: str = Field(alias="ecobeePin")
    code: str
    interval: int | None = None
    expires_in: int | None = None
    scope: str | None = None

    model_config = {"populate_by_name": True}


class TokenResponse(BaseModel):
    """Response from the ecobee token endpoint."""
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    scope: str | None = None

    def to_pair(self) -> TokenPair:
        return TokenPair(access_token=self.access_token, refresh_token=self.refresh_token)


class TokenStatus(BaseModel):
    """Current state of the stored tokens."""
    state: AuthState
    has_access_token: bool
    has_refresh_token: bool
    store_connected: bool = True
