"""
OpenID Connect Gate
===================

Starlette/FastAPI middleware that logs browsers in through an OpenID
Provider using the authorization code flow and exposes the result to every
request handler.

Wiring:
    app = FastAPI(lifespan=...)          # lifespan awaits discover_provider()
    install_openid_connect(app, settings)

Handlers:
    is_authenticated(request), user_id(request)
    Depends(require_authentication) for login-only routes
"""

__version__ = "1.0.0"
