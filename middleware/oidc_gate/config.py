"""
Configuration module for the OpenID Connect gate.

This module uses Pydantic Settings to load and validate environment variables
for the OpenID Provider client, the login/landing paths, the signed session
cookie and the provider HTTP transport.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List
from urllib.parse import urlparse

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Provider credentials, gate paths, session and transport settings are
    all defined here.
    """

    # =========================================================================
    # OpenID Provider Configuration
    # =========================================================================

    OIDC_ISSUER_URL: str = Field(
        ...,
        description="Issuer URL of the OpenID Provider (discovery base)",
        min_length=1,
    )

    OIDC_CLIENT_ID: str = Field(
        ...,
        description="Client identifier registered with the provider",
        min_length=1,
    )

    OIDC_CLIENT_SECRET: SecretStr = Field(
        ...,
        description="Client secret registered with the provider",
    )

    OIDC_REDIRECT_URL: str = Field(
        ...,
        description="Redirect URI registered with the provider (e.g., https://app.example.com/callback)",
        min_length=1,
    )

    OIDC_SCOPES: str = Field(
        default="openid",
        description="Space or comma separated scopes requested at login; must include 'openid'",
    )

    # =========================================================================
    # Gate Paths
    # =========================================================================

    LOGIN_PATH: str = Field(
        default="/login",
        description="Path intercepted to start the login redirect",
    )

    LANDING_PATH: str = Field(
        default="/",
        description="Path the browser is sent to after a successful login",
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: SecretStr = Field(
        ...,
        description="Secret key for signing the session cookie (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="session",
        description="Name of the signed session cookie",
        min_length=1,
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=14 * 24 * 60 * 60,
        description="Session cookie lifetime in seconds",
        ge=60,
    )

    SESSION_HTTPS_ONLY: bool = Field(
        default=False,
        description="Mark the session cookie Secure",
    )

    EPHEMERAL_COOKIE_SAMESITE: str = Field(
        default="strict",
        description="SameSite attribute of the CSRF and nonce cookies ('strict' or 'lax')",
    )

    # =========================================================================
    # Provider Transport
    # =========================================================================

    OIDC_HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to every call to the provider",
        gt=0,
        le=120,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider JWKS keys in seconds",
        ge=300,  # Min 5 minutes
        le=86400,  # Max 24 hours
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    MIDDLEWARE_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the example server",
    )

    MIDDLEWARE_PORT: int = Field(
        default=8080,
        description="Port to bind the example server",
        ge=1,
        le=65535,
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def scopes_list(self) -> List[str]:
        """
        Parse OIDC_SCOPES into an ordered, de-duplicated list.

        Returns:
            List of scope strings, 'openid' first.
        """
        scopes = ["openid"]
        for scope in self.OIDC_SCOPES.replace(",", " ").split():
            if scope not in scopes:
                scopes.append(scope)
        return scopes

    @property
    def callback_path(self) -> str:
        """
        Path component of the redirect URL; requests to it are callbacks.
        """
        return urlparse(self.OIDC_REDIRECT_URL).path or "/"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_ISSUER_URL", "OIDC_REDIRECT_URL")
    @classmethod
    def validate_absolute_url(cls, v: str) -> str:
        """
        Validate that provider-facing URLs are absolute http(s) URLs.

        Raises:
            ValueError: If the URL has no scheme/host or an unsupported scheme
        """
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(
                f"Invalid URL: '{v}'. Expected an absolute http(s) URL"
            )
        return v

    @field_validator("OIDC_SCOPES")
    @classmethod
    def validate_scopes(cls, v: str) -> str:
        """
        Validate that the 'openid' scope is requested.

        Raises:
            ValueError: If 'openid' is missing
        """
        if "openid" not in v.replace(",", " ").split():
            raise ValueError("OIDC_SCOPES must include 'openid'")
        return v

    @field_validator("LOGIN_PATH", "LANDING_PATH")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """
        Validate that gate paths are absolute paths.

        Raises:
            ValueError: If the path does not start with '/'
        """
        if not v.startswith("/"):
            raise ValueError(f"Invalid path: '{v}'. Paths must start with '/'")
        return v

    @field_validator("EPHEMERAL_COOKIE_SAMESITE")
    @classmethod
    def validate_samesite(cls, v: str) -> str:
        allowed = ["strict", "lax"]
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"EPHEMERAL_COOKIE_SAMESITE must be one of {allowed}, got: {v}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_distinct_paths(self) -> "Settings":
        """
        The login path and the callback path must not collide, otherwise
        request classification would be ambiguous.
        """
        if self.LOGIN_PATH == self.callback_path:
            raise ValueError(
                f"LOGIN_PATH '{self.LOGIN_PATH}' must differ from the redirect URL path"
            )
        return self


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate configuration settings and return a status report.

    This can be called during application startup to surface settings that
    are accepted but unsafe for production.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if not settings.OIDC_CLIENT_SECRET.get_secret_value():
        errors.append("OIDC_CLIENT_SECRET is empty")

    if urlparse(settings.OIDC_ISSUER_URL).scheme != "https":
        warnings.append("OIDC_ISSUER_URL is not https (discovery is not protected in transit)")

    if urlparse(settings.OIDC_REDIRECT_URL).scheme != "https":
        warnings.append("OIDC_REDIRECT_URL is not https (CSRF and nonce cookies will not be Secure)")

    if not settings.SESSION_HTTPS_ONLY:
        warnings.append("SESSION_HTTPS_ONLY is disabled (session cookie is sent over plain http)")

    if settings.EPHEMERAL_COOKIE_SAMESITE == "strict":
        warnings.append(
            "EPHEMERAL_COOKIE_SAMESITE is 'strict'; browsers may withhold the CSRF and nonce "
            "cookies on the cross-site redirect back from the provider"
        )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "login_path": settings.LOGIN_PATH,
        "callback_path": settings.callback_path,
        "landing_path": settings.LANDING_PATH,
    }
