"""
Ephemeral login state carried in cookies.

Each login attempt gets a fresh CSRF token and nonce. Both travel to the
browser as cookies on the login redirect and come back on the provider
callback, where they are checked and then cleared. Nothing is stored
server-side; a login that never completes simply leaves two session cookies
behind until the browser discards them.
"""

import secrets
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from oidc_gate.models import EphemeralState


CSRF_COOKIE_NAME = "openid_csrf"
NONCE_COOKIE_NAME = "openid_nonce"

# 32 bytes -> 256 bits of entropy per value
TOKEN_BYTES = 32


def generate_ephemeral_state() -> EphemeralState:
    """
    Generate an independent CSRF token and nonce for one login attempt.

    Returns:
        EphemeralState with two unrelated URL-safe random values
    """
    return EphemeralState(
        csrf_token=secrets.token_urlsafe(TOKEN_BYTES),
        nonce=secrets.token_urlsafe(TOKEN_BYTES),
    )


def attach_ephemeral_state(
    state: EphemeralState,
    response: Response,
    is_secure: bool,
    samesite: str = "strict",
) -> None:
    """
    Set the CSRF and nonce cookies on a response.

    Args:
        state: Values to carry to the browser
        response: Response the cookies are added to
        is_secure: Whether the inbound request was made over https
        samesite: SameSite attribute for both cookies
    """
    for name, value in ((CSRF_COOKIE_NAME, state.csrf_token), (NONCE_COOKIE_NAME, state.nonce)):
        response.set_cookie(
            name,
            value,
            path="/",
            secure=is_secure,
            httponly=True,
            samesite=samesite,
        )


def extract_ephemeral_state(request: Request) -> Optional[EphemeralState]:
    """
    Read the CSRF and nonce cookies from a request.

    Returns:
        EphemeralState, or None if either cookie is absent or empty
    """
    csrf_token = request.cookies.get(CSRF_COOKIE_NAME)
    nonce = request.cookies.get(NONCE_COOKIE_NAME)

    if not csrf_token or not nonce:
        return None

    return EphemeralState(csrf_token=csrf_token, nonce=nonce)


def clear_ephemeral_state(response: Response, is_secure: bool, samesite: str = "strict") -> None:
    """Expire both cookies immediately."""
    for name in (CSRF_COOKIE_NAME, NONCE_COOKIE_NAME):
        response.delete_cookie(
            name,
            path="/",
            secure=is_secure,
            httponly=True,
            samesite=samesite,
        )
