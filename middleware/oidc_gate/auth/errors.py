"""
Exceptions raised by the OpenID Connect gate.

Callback errors carry the HTTP status and the human-readable reason that the
callback handler renders on its error page. None of them are retried by the
gate; only an ``ExchangeError`` with reason ``TRANSPORT_FAILURE`` is worth
retrying, and only by starting a new login.
"""

from enum import Enum
from typing import Optional


class OpenIdConnectError(Exception):
    """Base exception for the OpenID Connect gate"""

    code = "openid_connect_error"
    status_code = 500
    title = "Authentication Error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.title
        super().__init__(self.message)


class DiscoveryError(OpenIdConnectError):
    """Provider metadata or keys are unreachable or malformed. Fatal at startup."""

    code = "discovery_failed"
    title = "Provider Discovery Failed"


class OpenIdConnectWiringError(RuntimeError):
    """
    The gate is not installed the way it must be.

    Raised when authentication context is read before the gate ran, or when
    the gate runs without a session store or a discovered provider.
    """


# =============================================================================
# Callback Errors
# =============================================================================

class CallbackError(OpenIdConnectError):
    """Base exception for failures while processing the provider callback"""

    status_code = 400


class MissingStateError(CallbackError):
    code = "missing_state"
    title = "Login Expired"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "No login in progress for this browser. Please start the login again."
        )


class MalformedCallbackError(CallbackError):
    code = "malformed_callback"
    title = "Invalid Request"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Missing required parameters (code or state)")


class CsrfMismatchError(CallbackError):
    code = "csrf_mismatch"
    status_code = 403
    title = "Security Error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "Invalid state parameter. This may be a forged request or a stale login link."
        )


class AuthorizationDeniedError(CallbackError):
    """The provider redirected back with an ``error`` instead of a code."""

    code = "authorization_denied"
    status_code = 401
    title = "Authentication Failed"

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        super().__init__(f"Unable to authenticate: {description or error}")


class ExchangeErrorReason(str, Enum):
    INVALID_CODE = "invalid_code"
    NONCE_MISMATCH = "nonce_mismatch"
    SIGNATURE_INVALID = "signature_invalid"
    TOKEN_EXPIRED = "token_expired"
    CLAIMS_INVALID = "claims_invalid"
    INVALID_RESPONSE = "invalid_response"
    TRANSPORT_FAILURE = "transport_failure"


_EXCHANGE_STATUS = {
    ExchangeErrorReason.INVALID_CODE: 400,
    ExchangeErrorReason.NONCE_MISMATCH: 401,
    ExchangeErrorReason.SIGNATURE_INVALID: 401,
    ExchangeErrorReason.TOKEN_EXPIRED: 401,
    ExchangeErrorReason.CLAIMS_INVALID: 401,
    ExchangeErrorReason.INVALID_RESPONSE: 502,
    ExchangeErrorReason.TRANSPORT_FAILURE: 502,
}


class ExchangeError(CallbackError):
    """The authorization code could not be turned into verified identity claims."""

    title = "Token Verification Failed"

    def __init__(self, reason: ExchangeErrorReason, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Token exchange failed: {reason.value}")

    @property
    def code(self) -> str:
        return self.reason.value

    @property
    def status_code(self) -> int:
        return _EXCHANGE_STATUS[self.reason]

    @property
    def retryable(self) -> bool:
        # Everything else means a forged, replayed or expired flow.
        return self.reason is ExchangeErrorReason.TRANSPORT_FAILURE


# =============================================================================
# Gate Errors
# =============================================================================

class LoginRequiredError(OpenIdConnectError):
    """An unauthenticated request reached a route that requires authentication."""

    code = "login_required"
    status_code = 302
    title = "Login Required"
