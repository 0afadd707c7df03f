"""
Wiring helpers that put the gate into a FastAPI/Starlette application.

Typical use:

    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app):
        await discover_provider(app, settings)
        yield

    app = FastAPI(lifespan=lifespan)
    install_openid_connect(app, settings)
"""

import logging
from typing import Optional

import httpx
from starlette.applications import Starlette
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from oidc_gate.config import Settings
from oidc_gate.auth.errors import LoginRequiredError
from oidc_gate.auth.middleware import PROVIDER_STATE_ATTRIBUTE, OpenIdConnectMiddleware
from oidc_gate.auth.provider import OpenIdProviderClient

logger = logging.getLogger(__name__)


def install_openid_connect(
    app: Starlette,
    settings: Settings,
    provider: Optional[OpenIdProviderClient] = None,
) -> None:
    """
    Add the gate, the session store and the login-required handler to an app.

    Middleware added later wraps middleware added earlier, so the session
    store is added last to sit outside the gate.

    Args:
        app: Application to configure (before it starts serving)
        settings: Gate and session configuration
        provider: Already-discovered provider; omit when discovery runs in
                  the application lifespan via ``discover_provider``
    """
    if provider is not None:
        setattr(app.state, PROVIDER_STATE_ATTRIBUTE, provider)

    app.add_middleware(OpenIdConnectMiddleware, settings=settings)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET.get_secret_value(),
        session_cookie=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=settings.SESSION_HTTPS_ONLY,
    )

    login_path = settings.LOGIN_PATH

    async def login_required_handler(request: Request, exc: LoginRequiredError) -> RedirectResponse:
        logger.debug("Login required", extra={"path": request.url.path})
        return RedirectResponse(url=login_path, status_code=302)

    app.add_exception_handler(LoginRequiredError, login_required_handler)


async def discover_provider(
    app: Starlette,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> OpenIdProviderClient:
    """
    Discover the provider and make it available to the gate.

    Meant for the application lifespan: a ``DiscoveryError`` propagates and
    aborts startup.
    """
    provider = await OpenIdProviderClient.from_settings(settings, transport=transport)
    setattr(app.state, PROVIDER_STATE_ATTRIBUTE, provider)
    return provider
