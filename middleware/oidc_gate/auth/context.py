"""
Per-request authentication context.

The gate attaches an ``OpenIdRequestContext`` to every request it lets
through. Handlers read it with the accessors below, either directly or as
FastAPI dependencies:

    @app.get("/")
    async def home(user: str = Depends(user_id)):
        ...

Reading the context on a request the gate never saw is a wiring bug, so the
accessors raise instead of returning an anonymous default.
"""

from starlette.requests import Request

from oidc_gate.models import OpenIdRequestContext
from oidc_gate.auth.errors import LoginRequiredError, OpenIdConnectWiringError


STATE_ATTRIBUTE = "openid_connect"


def attach_openid_context(request: Request, context: OpenIdRequestContext) -> None:
    setattr(request.state, STATE_ATTRIBUTE, context)


def get_openid_context(request: Request) -> OpenIdRequestContext:
    """
    Return the authentication context attached by the gate.

    Raises:
        OpenIdConnectWiringError: If OpenIdConnectMiddleware did not run
    """
    context = getattr(request.state, STATE_ATTRIBUTE, None)
    if not isinstance(context, OpenIdRequestContext):
        raise OpenIdConnectWiringError(
            "You must install OpenIdConnectMiddleware to access the OpenID Connect request data."
        )
    return context


def is_authenticated(request: Request) -> bool:
    return get_openid_context(request).is_authenticated


def user_id(request: Request) -> str:
    return get_openid_context(request).user_id


async def require_authentication(request: Request) -> OpenIdRequestContext:
    """
    FastAPI dependency for routes that require a logged-in user.

    Usage in routes:
        @app.get("/profile", dependencies=[Depends(require_authentication)])
        async def profile(request: Request):
            ...

    Raises:
        LoginRequiredError: If the request is not authenticated; the handler
                            installed with the gate turns this into a
                            redirect to the login path
    """
    context = get_openid_context(request)
    if not context.is_authenticated:
        raise LoginRequiredError()
    return context
