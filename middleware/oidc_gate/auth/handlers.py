"""
Login and callback handling for the OIDC authorization code flow.

Both handlers are invoked by the gate middleware, never through routing:
- generate_redirect: sends the browser to the provider with fresh state
- handle_callback: validates the provider's redirect back and logs the
  browser in
"""

import html
import logging
import secrets
from typing import Mapping, Tuple

from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from oidc_gate.config import Settings
from oidc_gate.models import AuthenticationResult, EphemeralState
from oidc_gate.auth.ephemeral import (
    attach_ephemeral_state,
    clear_ephemeral_state,
    extract_ephemeral_state,
    generate_ephemeral_state,
)
from oidc_gate.auth.errors import (
    AuthorizationDeniedError,
    CallbackError,
    CsrfMismatchError,
    MalformedCallbackError,
    MissingStateError,
)
from oidc_gate.auth.provider import OpenIdProviderClient
from oidc_gate.auth.session import write_authentication

logger = logging.getLogger(__name__)


def _is_secure(request: Request) -> bool:
    return request.url.scheme == "https"


# =============================================================================
# Login Redirect
# =============================================================================

def generate_redirect(
    request: Request,
    provider: OpenIdProviderClient,
    settings: Settings,
) -> Response:
    """
    Start a login by redirecting the browser to the provider.

    This handler:
    1. Generates a CSRF token and nonce for this attempt
    2. Builds the provider authorization URL carrying both values
    3. Returns a 302 to that URL with the values set as cookies

    The session is neither read nor written.
    """
    state = generate_ephemeral_state()
    authorization_url = provider.build_authorization_url(state.csrf_token, state.nonce)

    response = RedirectResponse(url=authorization_url, status_code=302)
    attach_ephemeral_state(
        state,
        response,
        is_secure=_is_secure(request),
        samesite=settings.EPHEMERAL_COOKIE_SAMESITE,
    )

    logger.info("Redirecting to OpenID Provider for login", extra={"path": request.url.path})
    return response


# =============================================================================
# Callback
# =============================================================================

def parse_callback(query: Mapping[str, str]) -> Tuple[str, str]:
    """
    Extract the authorization code and state from the callback query.

    Returns:
        (code, state)

    Raises:
        AuthorizationDeniedError: If the provider reported an error instead
        MalformedCallbackError: If code or state is missing or empty
    """
    error = query.get("error")
    if error:
        raise AuthorizationDeniedError(error, query.get("error_description"))

    code = query.get("code")
    state = query.get("state")
    if not code or not state:
        raise MalformedCallbackError()

    return code, state


def verify_csrf(received_state: str, ephemeral: EphemeralState) -> None:
    """
    Compare the returned state with the CSRF cookie in constant time.

    Raises:
        CsrfMismatchError: If they differ
    """
    if not secrets.compare_digest(
        received_state.encode("utf-8"),
        ephemeral.csrf_token.encode("utf-8"),
    ):
        raise CsrfMismatchError()


async def handle_callback(
    request: Request,
    provider: OpenIdProviderClient,
    settings: Settings,
) -> Response:
    """
    Complete a login from the provider's redirect back.

    This handler:
    1. Reads the CSRF token and nonce cookies
    2. Parses code and state from the query string
    3. Checks state against the CSRF cookie
    4. Exchanges the code, verifying the ID token and its nonce
    5. Marks the session authenticated with the token subject
    6. Clears the CSRF and nonce cookies
    7. Redirects to the landing path

    Any failure in steps 1-4 returns an error page and leaves the session
    exactly as it was.
    """
    try:
        ephemeral = extract_ephemeral_state(request)
        if ephemeral is None:
            raise MissingStateError()

        code, state = parse_callback(request.query_params)
        verify_csrf(state, ephemeral)

        claims = await provider.exchange_code(code, nonce=ephemeral.nonce)
    except CallbackError as e:
        logger.warning(
            f"OpenID callback rejected: {e.message}",
            extra={"error_code": e.code, "status_code": e.status_code},
        )
        return render_error_page(
            title=e.title,
            message=e.message,
            login_path=settings.LOGIN_PATH,
            status_code=e.status_code,
        )

    write_authentication(
        request,
        AuthenticationResult(is_authenticated=True, user_id=claims.subject),
    )

    response = RedirectResponse(url=settings.LANDING_PATH, status_code=302)
    clear_ephemeral_state(
        response,
        is_secure=_is_secure(request),
        samesite=settings.EPHEMERAL_COOKIE_SAMESITE,
    )

    logger.info("User logged in", extra={"user_id": claims.subject})
    return response


# =============================================================================
# HTML Response Templates
# =============================================================================

def render_error_page(
    title: str,
    message: str,
    login_path: str,
    status_code: int = 400,
) -> HTMLResponse:
    """
    Render error page for authentication failures.

    Args:
        title: Error title
        message: Error message (no secrets)
        login_path: Path of the "Try Again" link
        status_code: HTTP status code

    Returns:
        HTMLResponse with error information
    """
    html_content = f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>{html.escape(title)}</title>
        <style>
            body {{
                font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
                background: #f3f4f6;
                display: flex;
                align-items: center;
                justify-content: center;
                min-height: 100vh;
                margin: 0;
            }}
            .container {{
                background: white;
                border-radius: 12px;
                padding: 40px;
                max-width: 500px;
                text-align: center;
                box-shadow: 0 10px 40px rgba(0,0,0,0.1);
            }}
            h1 {{ color: #1f2937; font-size: 24px; }}
            .message {{ color: #6b7280; line-height: 1.6; margin-bottom: 32px; }}
            .button {{
                background: #667eea;
                color: white;
                padding: 14px 32px;
                border-radius: 8px;
                text-decoration: none;
                font-weight: 600;
            }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1>{html.escape(title)}</h1>
            <p class="message">{html.escape(message)}</p>
            <a href="{html.escape(login_path, quote=True)}" class="button">Try Again</a>
        </div>
    </body>
    </html>
    """

    return HTMLResponse(content=html_content, status_code=status_code)
