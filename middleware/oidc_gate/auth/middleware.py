"""
OpenID Connect gate middleware.

Every request passes through ``OpenIdConnectMiddleware`` first and is
classified by method and path:

- GET <login path>     -> redirect to the provider (no route runs)
- GET <callback path>  -> complete the login (no route runs)
- anything else        -> attach the authentication context, then dispatch

Routes that require a logged-in user declare ``Depends(require_authentication)``;
the handler registered by ``install_openid_connect`` answers those with a
redirect to the login path.
"""

from enum import Enum

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from oidc_gate.config import Settings
from oidc_gate.models import OpenIdRequestContext
from oidc_gate.auth.context import attach_openid_context
from oidc_gate.auth.errors import OpenIdConnectWiringError
from oidc_gate.auth.handlers import generate_redirect, handle_callback
from oidc_gate.auth.provider import OpenIdProviderClient
from oidc_gate.auth.session import read_authentication


PROVIDER_STATE_ATTRIBUTE = "openid_provider"


class RequestKind(str, Enum):
    LOGIN = "login"
    CALLBACK = "callback"
    OTHER = "other"


def classify_request(method: str, path: str, login_path: str, callback_path: str) -> RequestKind:
    """
    Decide which part of the gate handles a request.

    Only GET requests are intercepted; every other method on the login or
    callback path is dispatched like any other request.
    """
    if method == "GET" and path == login_path:
        return RequestKind.LOGIN
    if method == "GET" and path == callback_path:
        return RequestKind.CALLBACK
    return RequestKind.OTHER


class OpenIdConnectMiddleware(BaseHTTPMiddleware):
    """
    Starlette middleware implementing the browser side of the OIDC
    authorization code flow.

    Requires ``SessionMiddleware`` to run outside it and the discovered
    ``OpenIdProviderClient`` on ``app.state.openid_provider`` (see
    ``install_openid_connect`` and ``discover_provider``).

    Args:
        app: The ASGI application.
        settings: Gate configuration (login, callback and landing paths).
    """

    def __init__(self, app: ASGIApp, settings: Settings) -> None:
        super().__init__(app)
        self._settings = settings
        self._login_path = settings.LOGIN_PATH
        self._callback_path = settings.callback_path

    def __repr__(self) -> str:
        return (
            f"OpenIdConnectMiddleware(login_path={self._login_path!r}, "
            f"callback_path={self._callback_path!r}, "
            f"landing_path={self._settings.LANDING_PATH!r})"
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        kind = classify_request(
            request.method,
            request.url.path,
            self._login_path,
            self._callback_path,
        )

        if kind is RequestKind.LOGIN:
            return generate_redirect(request, self._provider(request), self._settings)

        if kind is RequestKind.CALLBACK:
            return await handle_callback(request, self._provider(request), self._settings)

        result = read_authentication(request)
        attach_openid_context(
            request,
            OpenIdRequestContext(
                is_authenticated=result.is_authenticated,
                user_id=result.user_id,
            ),
        )

        return await call_next(request)

    def _provider(self, request: Request) -> OpenIdProviderClient:
        provider = getattr(request.app.state, PROVIDER_STATE_ATTRIBUTE, None)
        if provider is None:
            raise OpenIdConnectWiringError(
                "No OpenID Provider discovered; run discover_provider() during startup "
                "or pass provider= to install_openid_connect()."
            )
        return provider
