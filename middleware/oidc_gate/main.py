"""
FastAPI Application Factory
===========================

Example service protected by the OpenID Connect gate.

Request flow:
    Browser → SessionMiddleware → OpenIdConnectMiddleware → routes

Routes:
    - GET /login     : Intercepted by the gate, redirects to the provider
    - GET /callback  : Intercepted by the gate (path of OIDC_REDIRECT_URL)
    - GET /          : Public, reports the caller's authentication state
    - GET /profile   : Requires login, redirects to /login otherwise
    - GET /logout    : Clears the session authentication
    - GET /health    : Health check

Environment Variables Required:
    - OIDC_ISSUER_URL: Issuer URL of the OpenID Provider
    - OIDC_CLIENT_ID: Client ID registered with the provider
    - OIDC_CLIENT_SECRET: Client secret registered with the provider
    - OIDC_REDIRECT_URL: Redirect URI registered with the provider
    - SESSION_SECRET: Secret for signing the session cookie (32+ chars)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn oidc_gate.main:create_app --factory --reload --port 8080

    Direct:
        python -m oidc_gate.main
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oidc_gate import __version__
from oidc_gate.auth import (
    clear_authentication,
    discover_provider,
    get_openid_context,
    install_openid_connect,
    require_authentication,
)
from oidc_gate.config import Settings, get_settings, validate_configuration
from oidc_gate.models import OpenIdRequestContext


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (provider discovery)
        - Session and OpenID Connect middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Configuration; loaded from the environment when omitted
        transport: httpx transport for provider calls (tests inject a mock)

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup tasks:
            - Configure logging
            - Report unsafe configuration
            - Discover the OpenID Provider (failure aborts startup)
        """
        setup_logging(settings.LOG_LEVEL)
        logger = logging.getLogger("oidc_gate.main")

        status = validate_configuration(settings)
        for warning in status["warnings"]:
            logger.warning(f"Configuration warning: {warning}")

        provider = await discover_provider(app, settings, transport=transport)

        logger.info(
            "OpenID Connect gate started",
            extra={
                "issuer": provider.config.issuer,
                "login_path": status["login_path"],
                "callback_path": status["callback_path"],
                "version": __version__,
            }
        )

        yield

        logger.info("OpenID Connect gate shutdown complete")

    app = FastAPI(
        title="OpenID Connect Gate",
        description="Browser login through an OpenID Provider",
        version=__version__,
        lifespan=lifespan,
    )

    install_openid_connect(app, settings)

    # Root endpoint
    @app.get("/", tags=["System"])
    async def root(request: Request) -> Dict[str, Any]:
        """
        Public endpoint reporting the caller's authentication state.
        """
        context = get_openid_context(request)
        return {
            "is_authenticated": context.is_authenticated,
            "user_id": context.user_id,
        }

    @app.get("/profile", tags=["Authentication"])
    async def profile(
        context: OpenIdRequestContext = Depends(require_authentication),
    ) -> Dict[str, str]:
        return {"user_id": context.user_id}

    @app.get("/logout", tags=["Authentication"])
    async def logout(request: Request) -> RedirectResponse:
        """
        Forget the logged-in user and return to the landing path.
        """
        context = get_openid_context(request)
        clear_authentication(request)
        logging.getLogger("oidc_gate.main").info(
            "User logged out", extra={"user_id": context.user_id}
        )
        return RedirectResponse(url=settings.LANDING_PATH, status_code=302)

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        return {
            "status": "ok",
            "service": "oidc-gate",
            "version": __version__
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.

        Args:
            request: FastAPI request object
            exc: Exception that was raised

        Returns:
            JSONResponse: Standardized error response
        """
        logger = logging.getLogger("oidc_gate.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "oidc_gate.main:create_app",
        factory=True,
        host=settings.MIDDLEWARE_HOST,
        port=settings.MIDDLEWARE_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
