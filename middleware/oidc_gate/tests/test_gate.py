"""
Request Gate Tests

Tests request classification, context attachment and the errors raised
when the gate is wired incorrectly.
"""

import pytest
from pydantic import ValidationError
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from starlette.middleware.sessions import SessionMiddleware

from oidc_gate.auth import (
    LoginRequiredError,
    OpenIdConnectMiddleware,
    OpenIdConnectWiringError,
    OpenIdProviderClient,
    RequestKind,
    classify_request,
    get_openid_context,
    install_openid_connect,
    is_authenticated,
    require_authentication,
    user_id,
)
from oidc_gate.auth.context import STATE_ATTRIBUTE, attach_openid_context
from oidc_gate.models import OpenIdRequestContext, ProviderConfig

from helpers import CLIENT_ID, CLIENT_SECRET, ISSUER, REDIRECT_URL, SESSION_SECRET


def make_request() -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [],
        "query_string": b"",
    })


class ScopeRecorder:
    """Outermost ASGI app keeping every HTTP scope that passed through"""

    def __init__(self, app):
        self.app = app
        self.scopes = []

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            self.scopes.append(scope)
        await self.app(scope, receive, send)

    def context_for(self, path: str):
        scope = next(s for s in reversed(self.scopes) if s["path"] == path)
        return scope.get("state", {}).get(STATE_ATTRIBUTE)


@pytest.fixture
def provider(fake_provider):
    """Provider client built from already-known metadata, skipping discovery"""
    config = ProviderConfig(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_url=REDIRECT_URL,
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        jwks_uri=f"{ISSUER}/jwks",
    )
    return OpenIdProviderClient(config, fake_provider.jwks, transport=fake_provider.transport)


def build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/")
    async def root(request: Request):
        return {"is_authenticated": is_authenticated(request), "user_id": user_id(request)}

    @app.post("/login")
    async def login_form():
        return {"route": "login_form"}

    return app


class TestClassifyRequest:

    @pytest.mark.parametrize(
        "method,path,expected",
        [
            ("GET", "/login", RequestKind.LOGIN),
            ("GET", "/callback", RequestKind.CALLBACK),
            ("GET", "/", RequestKind.OTHER),
            ("GET", "/login/", RequestKind.OTHER),
            ("GET", "/callbacks", RequestKind.OTHER),
            ("POST", "/login", RequestKind.OTHER),
            ("POST", "/callback", RequestKind.OTHER),
            ("HEAD", "/login", RequestKind.OTHER),
        ],
    )
    def test_classification(self, method, path, expected):
        assert classify_request(method, path, "/login", "/callback") is expected

    def test_custom_paths(self):
        assert classify_request("GET", "/auth/start", "/auth/start", "/auth/done") is RequestKind.LOGIN
        assert classify_request("GET", "/auth/done", "/auth/start", "/auth/done") is RequestKind.CALLBACK
        assert classify_request("GET", "/login", "/auth/start", "/auth/done") is RequestKind.OTHER


class TestRequestContext:

    def test_context_without_gate_is_a_wiring_error(self):
        request = make_request()

        with pytest.raises(OpenIdConnectWiringError) as exc_info:
            get_openid_context(request)

        assert "OpenIdConnectMiddleware" in str(exc_info.value)

        with pytest.raises(OpenIdConnectWiringError):
            is_authenticated(request)

        with pytest.raises(OpenIdConnectWiringError):
            user_id(request)

    def test_accessors_read_attached_context(self):
        request = make_request()
        attach_openid_context(request, OpenIdRequestContext(is_authenticated=True, user_id="user-9"))

        assert is_authenticated(request) is True
        assert user_id(request) == "user-9"

    def test_context_is_read_only(self):
        context = OpenIdRequestContext(is_authenticated=True, user_id="user-9")

        with pytest.raises(ValidationError):
            context.user_id = "someone-else"

    @pytest.mark.asyncio
    async def test_require_authentication(self):
        anonymous = make_request()
        attach_openid_context(anonymous, OpenIdRequestContext())
        with pytest.raises(LoginRequiredError):
            await require_authentication(anonymous)

        logged_in = make_request()
        attach_openid_context(logged_in, OpenIdRequestContext(is_authenticated=True, user_id="user-9"))
        context = await require_authentication(logged_in)
        assert context.user_id == "user-9"

    def test_context_only_attached_to_dispatched_requests(self, settings, provider):
        app = build_app()
        routes_reached = []

        @app.get("/login")
        async def shadowed_login():
            routes_reached.append("/login")
            return {}

        @app.get("/callback")
        async def shadowed_callback():
            routes_reached.append("/callback")
            return {}

        install_openid_connect(app, settings, provider=provider)
        recorder = ScopeRecorder(app)

        with TestClient(recorder) as client:
            assert client.get("/login", follow_redirects=False).status_code == 302
            assert client.get("/callback", params={"code": "auth-code"}).status_code == 400
            assert client.get("/").status_code == 200

        assert routes_reached == []
        assert recorder.context_for("/login") is None
        assert recorder.context_for("/callback") is None
        assert recorder.context_for("/") == OpenIdRequestContext()


class TestWiring:

    def test_install_with_discovered_provider(self, settings, provider):
        app = build_app()
        install_openid_connect(app, settings, provider=provider)

        with TestClient(app) as client:
            response = client.get("/")
            assert response.json() == {"is_authenticated": False, "user_id": ""}

            response = client.get("/login", follow_redirects=False)
            assert response.status_code == 302
            assert response.headers["location"].startswith(f"{ISSUER}/authorize?")

    def test_non_get_login_reaches_routes(self, settings, provider):
        app = build_app()
        install_openid_connect(app, settings, provider=provider)

        with TestClient(app) as client:
            response = client.post("/login", follow_redirects=False)

        assert response.status_code == 200
        assert response.json() == {"route": "login_form"}
        assert "openid_csrf" not in response.headers.get("set-cookie", "")

    def test_missing_provider_is_a_wiring_error(self, settings):
        app = build_app()
        install_openid_connect(app, settings)

        with TestClient(app) as client:
            with pytest.raises(OpenIdConnectWiringError) as exc_info:
                client.get("/login")

        assert "discover_provider" in str(exc_info.value)

    def test_missing_session_middleware_is_a_wiring_error(self, settings, provider):
        app = build_app()
        app.add_middleware(OpenIdConnectMiddleware, settings=settings)
        app.state.openid_provider = provider

        with TestClient(app) as client:
            with pytest.raises(OpenIdConnectWiringError) as exc_info:
                client.get("/")

        assert "SessionMiddleware" in str(exc_info.value)

    def test_session_middleware_inside_gate_is_a_wiring_error(self, settings, provider):
        app = build_app()
        # Added first, so it runs inside the gate
        app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)
        app.add_middleware(OpenIdConnectMiddleware, settings=settings)
        app.state.openid_provider = provider

        with TestClient(app) as client:
            with pytest.raises(OpenIdConnectWiringError):
                client.get("/")

    def test_protected_route_without_gate_is_a_wiring_error(self):
        app = FastAPI()

        @app.get("/profile")
        async def profile(context: OpenIdRequestContext = Depends(require_authentication)):
            return {"user_id": context.user_id}

        with TestClient(app) as client:
            with pytest.raises(OpenIdConnectWiringError):
                client.get("/profile")
