"""
Session-resident authentication result.

The result of a successful login lives in the Starlette session (a signed
cookie managed by ``SessionMiddleware``) under a single fixed key, as a plain
JSON object ``{"is_authenticated": bool, "user_id": str}``.
"""

import logging

from pydantic import ValidationError
from starlette.requests import Request

from oidc_gate.models import AuthenticationResult
from oidc_gate.auth.errors import OpenIdConnectWiringError

logger = logging.getLogger(__name__)


SESSION_KEY = "openid_connect"


def _session(request: Request) -> dict:
    if "session" not in request.scope:
        raise OpenIdConnectWiringError(
            "SessionMiddleware must be installed outside OpenIdConnectMiddleware "
            "to store the authentication result."
        )
    return request.session


def read_authentication(request: Request) -> AuthenticationResult:
    """
    Read the authentication result from the session.

    An absent or unreadable entry means the browser is not logged in.

    Raises:
        OpenIdConnectWiringError: If no session store is installed
    """
    data = _session(request).get(SESSION_KEY)
    if data is None:
        return AuthenticationResult()

    try:
        result = AuthenticationResult.model_validate(data)
    except ValidationError:
        logger.warning("Discarding malformed authentication result in session")
        return AuthenticationResult()

    # A session that claims authentication without a user is not trusted.
    if result.is_authenticated and not result.user_id:
        return AuthenticationResult()

    return result


def write_authentication(request: Request, result: AuthenticationResult) -> None:
    """Store the authentication result in the session."""
    _session(request)[SESSION_KEY] = result.model_dump()


def clear_authentication(request: Request) -> None:
    """
    Drop the authentication result from the session.

    Applications call this from their own logout route.
    """
    _session(request).pop(SESSION_KEY, None)
