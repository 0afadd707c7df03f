"""
Authentication Package

This package implements the browser-facing half of the OpenID Connect
authorization code flow as Starlette middleware.

Key responsibilities:
- Provider discovery, authorization URLs and code exchange
- Single-use CSRF token and nonce cookies for each login attempt
- Login redirect and callback handling
- Classifying every request and attaching its authentication context
- Redirecting unauthenticated requests away from protected routes

Modules:
- provider: OpenID Provider client (discovery, token exchange, ID token checks)
- ephemeral: CSRF/nonce cookie handling
- handlers: Login redirect and callback processing
- middleware: The request gate
- context: Per-request authentication accessors and dependencies
- session: Session-resident authentication result
- setup: Helpers to install the gate into an application

The authentication flow:
1. Browser requests the login path; the gate redirects to the provider
2. User authenticates with the provider
3. Provider redirects back to the callback path with code and state
4. Gate checks state, exchanges the code, verifies the ID token and nonce
5. Gate marks the session authenticated and redirects to the landing path
6. Later requests carry the session; handlers read the attached context
"""

from .context import (
    get_openid_context,
    is_authenticated,
    require_authentication,
    user_id,
)
from .errors import (
    AuthorizationDeniedError,
    CallbackError,
    CsrfMismatchError,
    DiscoveryError,
    ExchangeError,
    ExchangeErrorReason,
    LoginRequiredError,
    MalformedCallbackError,
    MissingStateError,
    OpenIdConnectError,
    OpenIdConnectWiringError,
)
from .middleware import OpenIdConnectMiddleware, RequestKind, classify_request
from .provider import OpenIdProviderClient
from .session import clear_authentication
from .setup import discover_provider, install_openid_connect

__all__ = [
    # Wiring
    "install_openid_connect",
    "discover_provider",
    "OpenIdConnectMiddleware",
    "OpenIdProviderClient",

    # Request context
    "get_openid_context",
    "is_authenticated",
    "user_id",
    "require_authentication",
    "clear_authentication",

    # Classification
    "RequestKind",
    "classify_request",

    # Exceptions
    "OpenIdConnectError",
    "OpenIdConnectWiringError",
    "DiscoveryError",
    "CallbackError",
    "MissingStateError",
    "MalformedCallbackError",
    "CsrfMismatchError",
    "AuthorizationDeniedError",
    "ExchangeError",
    "ExchangeErrorReason",
    "LoginRequiredError",
]
