"""
Data Models Module

This module defines the Pydantic models shared by the OpenID Connect gate.

Models are organized by functional area:
- Provider models (discovered configuration, verified identity claims)
- Login transaction models (CSRF token and nonce)
- Session and request models (authentication result, per-request context)
"""

from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SecretStr


# ============================================================================
# Provider Models
# ============================================================================

class ProviderConfig(BaseModel):
    """Discovered provider metadata plus client credentials. Read-only after discovery."""

    model_config = ConfigDict(frozen=True)

    issuer: str = Field(..., description="Issuer identifier reported by the provider")
    client_id: str = Field(..., description="Client identifier")
    client_secret: SecretStr = Field(..., description="Client secret")
    redirect_url: str = Field(..., description="Redirect URI registered with the provider")
    authorization_endpoint: str = Field(..., description="Authorization endpoint URL")
    token_endpoint: str = Field(..., description="Token endpoint URL")
    jwks_uri: str = Field(..., description="JSON Web Key Set URL")
    userinfo_endpoint: Optional[str] = Field(None, description="UserInfo endpoint URL")
    id_token_signing_alg_values_supported: Tuple[str, ...] = Field(
        default=("RS256",),
        description="Algorithms the provider signs ID tokens with",
    )
    token_endpoint_auth_methods_supported: Tuple[str, ...] = Field(
        default=("client_secret_basic",),
        description="Client authentication methods accepted at the token endpoint",
    )
    scopes: Tuple[str, ...] = Field(default=("openid",), description="Scopes requested at login")


class IdentityClaims(BaseModel):
    """Claims taken from a verified ID token."""

    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., min_length=1, description="Stable user identifier assigned by the provider")
    issuer: str = Field(..., description="Token issuer")
    audience: List[str] = Field(..., description="Token audience")
    expires_at: datetime = Field(..., description="Token expiry")
    issued_at: Optional[datetime] = Field(None, description="Token issue time")
    name: Optional[str] = Field(None, description="User display name")
    email: Optional[str] = Field(None, description="User email address")
    email_verified: Optional[bool] = Field(None, description="Whether the provider verified the email")


# ============================================================================
# Login Transaction Models
# ============================================================================

class EphemeralState(BaseModel):
    """Single-use CSRF token and nonce for one login attempt."""

    model_config = ConfigDict(frozen=True)

    csrf_token: str = Field(..., min_length=1, description="Anti-forgery value echoed back as 'state'")
    nonce: str = Field(..., min_length=1, description="Replay-protection value bound into the ID token")


# ============================================================================
# Session and Request Models
# ============================================================================

class AuthenticationResult(BaseModel):
    """Session-resident authentication result written after a successful login."""

    is_authenticated: bool = Field(default=False, description="Whether the session is logged in")
    user_id: str = Field(default="", description="Subject identifier of the logged-in user")


class OpenIdRequestContext(BaseModel):
    """Read-only authentication snapshot attached to each gated request."""

    model_config = ConfigDict(frozen=True)

    is_authenticated: bool = False
    user_id: str = ""
