"""
Test doubles and constants shared by the OpenID Connect gate tests.

The OpenID Provider is simulated with an httpx.MockTransport that serves
discovery metadata, a JWKS and a token endpoint issuing ID tokens signed
with a locally generated RSA key.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import jwt
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from oidc_gate.config import Settings


ISSUER = "https://op.example.com"
CLIENT_ID = "gate-client"
CLIENT_SECRET = "gate-secret"
REDIRECT_URL = "http://testserver/callback"
SESSION_SECRET = "test-session-secret-0123456789abcdef"
TEST_KID = "test-key-id-2024"
TEST_SUBJECT = "user-123"


def generate_test_key():
    """Generate an RSA private key and its PEM encoding"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    return private_key, private_pem.decode()


def create_jwk(private_key, kid: str) -> Dict[str, Any]:
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk["kid"] = kid
    jwk["use"] = "sig"
    jwk["alg"] = "RS256"
    return jwk


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PRIVATE_PEM = generate_test_key()
OTHER_PRIVATE_KEY, OTHER_PRIVATE_PEM = generate_test_key()


class FakeProvider:
    """
    In-memory OpenID Provider.

    Authorization codes are issued explicitly with ``issue_code`` (standing
    in for the user logging in at the provider) and are single-use.
    """

    def __init__(self):
        self.signing_pem = TEST_PRIVATE_PEM
        self.kid = TEST_KID
        self.jwks: Dict[str, Any] = {"keys": [create_jwk(TEST_PRIVATE_KEY, TEST_KID)]}
        self.metadata: Dict[str, Any] = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "jwks_uri": f"{ISSUER}/jwks",
            "userinfo_endpoint": f"{ISSUER}/userinfo",
            "response_types_supported": ["code"],
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": ["RS256"],
        }
        self.discovery_status = 200
        self.token_status = 200
        self.token_response: Optional[httpx.Response] = None
        self.claim_overrides: Dict[str, Any] = {}
        self.codes: Dict[str, str] = {}
        self.jwks_requests = 0
        self.token_requests: List[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def issue_code(self, nonce: str) -> str:
        code = f"auth-code-{len(self.codes) + 1}"
        self.codes[code] = nonce
        return code

    def id_token(self, nonce: Optional[str], **overrides) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iss": ISSUER,
            "sub": TEST_SUBJECT,
            "aud": CLIENT_ID,
            "exp": now + timedelta(minutes=60),
            "iat": now,
            "nonce": nonce,
            "name": "Test User",
            "email": "user@example.com",
        }
        payload.update(self.claim_overrides)
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not None}

        return jwt.encode(payload, self.signing_pem, algorithm="RS256", headers={"kid": self.kid})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if path == "/.well-known/openid-configuration":
            return httpx.Response(self.discovery_status, json=self.metadata)

        if path == "/jwks":
            self.jwks_requests += 1
            return httpx.Response(200, json=self.jwks)

        if path == "/token" and request.method == "POST":
            return self._token(request)

        return httpx.Response(404, json={"error": "not_found"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.token_requests.append(request)

        if self.token_response is not None:
            return self.token_response

        if self.token_status != 200:
            return httpx.Response(
                self.token_status,
                json={"error": "invalid_grant", "error_description": "Code expired"},
            )

        form = dict(parse_qsl(request.content.decode()))
        nonce = self.codes.pop(form.get("code", ""), None)
        if nonce is None:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Unknown authorization code"},
            )

        return httpx.Response(
            200,
            json={
                "access_token": "mock-access-token",
                "token_type": "Bearer",
                "expires_in": 3600,
                "id_token": self.id_token(nonce),
            },
        )


def make_settings(**overrides) -> Settings:
    values = {
        "OIDC_ISSUER_URL": ISSUER,
        "OIDC_CLIENT_ID": CLIENT_ID,
        "OIDC_CLIENT_SECRET": CLIENT_SECRET,
        "OIDC_REDIRECT_URL": REDIRECT_URL,
        "OIDC_SCOPES": "openid email profile",
        "SESSION_SECRET": SESSION_SECRET,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def login_redirect_params(response) -> Dict[str, str]:
    """Query parameters of the authorization URL a login redirect points to"""
    query = parse_qs(urlparse(response.headers["location"]).query)
    return {key: values[0] for key, values in query.items()}
