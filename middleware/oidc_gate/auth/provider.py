"""
OpenID Provider client.

This module handles:
- Discovering provider metadata and signing keys at startup
- Building the authorization URL for the login redirect
- Exchanging authorization codes and verifying the returned ID token
- Caching the provider JWKS and refreshing it when keys rotate
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote, urlencode

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
from pydantic import ValidationError

from oidc_gate.config import Settings
from oidc_gate.models import IdentityClaims, ProviderConfig
from oidc_gate.auth.errors import DiscoveryError, ExchangeError, ExchangeErrorReason

logger = logging.getLogger(__name__)


DISCOVERY_PATH = "/.well-known/openid-configuration"

# Asymmetric algorithms only; 'none' and HMAC are never accepted for ID tokens.
SUPPORTED_SIGNING_ALGORITHMS = ("RS256", "RS384", "RS512", "ES256", "ES384", "ES512")

ID_TOKEN_LEEWAY_SECONDS = 10

REQUIRED_METADATA = ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")


class OpenIdProviderClient:
    """
    Client for a single OpenID Provider.

    Instances are built once by ``discover`` before the application accepts
    traffic. The provider configuration is immutable afterwards; the only
    mutable piece is the JWKS cache, which is swapped as a whole on refresh.
    """

    def __init__(
        self,
        config: ProviderConfig,
        jwks: Dict[str, Any],
        timeout: float = 10.0,
        jwks_cache_seconds: int = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._jwks = jwks
        self._jwks_fetched_at = time.monotonic()
        self._jwks_cache_seconds = jwks_cache_seconds
        self._timeout = timeout
        self._transport = transport
        self._algorithms = [
            alg for alg in config.id_token_signing_alg_values_supported
            if alg in SUPPORTED_SIGNING_ALGORITHMS
        ]

    def __repr__(self) -> str:
        return f"OpenIdProviderClient(issuer={self.config.issuer!r}, client_id={self.config.client_id!r})"

    # =========================================================================
    # Discovery
    # =========================================================================

    @classmethod
    async def discover(
        cls,
        issuer_url: str,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        scopes: Sequence[str] = ("openid",),
        timeout: float = 10.0,
        jwks_cache_seconds: int = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OpenIdProviderClient":
        """
        Fetch and validate the provider metadata and signing keys.

        Args:
            issuer_url: Issuer URL; metadata is read from its well-known path
            client_id: Client identifier registered with the provider
            client_secret: Client secret registered with the provider
            redirect_url: Redirect URI registered with the provider
            scopes: Scopes requested at login ('openid' is always included)
            timeout: Timeout in seconds for every provider call
            jwks_cache_seconds: How long fetched keys are trusted before refresh
            transport: Optional httpx transport (tests)

        Returns:
            Ready-to-use provider client

        Raises:
            DiscoveryError: If the provider is unreachable or its metadata
                            or keys are malformed
        """
        discovery_url = issuer_url.rstrip("/") + DISCOVERY_PATH
        logger.info("Discovering OpenID Provider", extra={"discovery_url": discovery_url})

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                metadata = await _get_json(client, discovery_url)
                config = _build_provider_config(
                    metadata,
                    issuer_url=issuer_url,
                    client_id=client_id,
                    client_secret=client_secret,
                    redirect_url=redirect_url,
                    scopes=scopes,
                )
                jwks = await _get_json(client, config.jwks_uri)
        except httpx.HTTPError as e:
            logger.error(f"Provider discovery failed: {e}", extra={"discovery_url": discovery_url})
            raise DiscoveryError(f"Unable to reach provider: {e}") from e
        except ValueError as e:
            logger.error(f"Provider returned malformed JSON: {e}", extra={"discovery_url": discovery_url})
            raise DiscoveryError(f"Provider returned malformed JSON: {e}") from e

        if not _is_jwks(jwks):
            raise DiscoveryError("Invalid JWKS response: missing 'keys' field")

        logger.info(
            "Discovered OpenID Provider",
            extra={
                "issuer": config.issuer,
                "signing_algorithms": list(config.id_token_signing_alg_values_supported),
                "keys": len(jwks["keys"]),
            },
        )

        return cls(
            config,
            jwks,
            timeout=timeout,
            jwks_cache_seconds=jwks_cache_seconds,
            transport=transport,
        )

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OpenIdProviderClient":
        """Discover the provider described by the application settings."""
        return await cls.discover(
            issuer_url=settings.OIDC_ISSUER_URL,
            client_id=settings.OIDC_CLIENT_ID,
            client_secret=settings.OIDC_CLIENT_SECRET.get_secret_value(),
            redirect_url=settings.OIDC_REDIRECT_URL,
            scopes=settings.scopes_list,
            timeout=settings.OIDC_HTTP_TIMEOUT_SECONDS,
            jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
            transport=transport,
        )

    # =========================================================================
    # Authorization URL
    # =========================================================================

    def build_authorization_url(self, csrf_token: str, nonce: str) -> str:
        """
        Build the provider authorization URL for one login attempt.

        Args:
            csrf_token: Value the provider echoes back as 'state'
            nonce: Value the provider binds into the ID token

        Returns:
            Authorization endpoint URL with the encoded query string
        """
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "scope": " ".join(self.config.scopes),
            "state": csrf_token,
            "nonce": nonce,
            "redirect_uri": self.config.redirect_url,
        }

        endpoint = self.config.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    # =========================================================================
    # Code Exchange
    # =========================================================================

    async def exchange_code(self, code: str, nonce: str) -> IdentityClaims:
        """
        Exchange an authorization code for verified identity claims.

        The ID token must be signed by one of the provider's keys with an
        advertised algorithm, be issued by the provider to this client, be
        unexpired, and carry the nonce of the login that produced the code.

        Args:
            code: Authorization code from the callback
            nonce: Nonce generated for this login attempt

        Returns:
            Claims of the verified ID token

        Raises:
            ExchangeError: With the reason the exchange failed
        """
        token_data = await self._request_tokens(code)

        id_token = token_data.get("id_token")
        if not isinstance(id_token, str) or not id_token:
            raise ExchangeError(
                ExchangeErrorReason.INVALID_RESPONSE,
                "No ID token received from identity provider",
            )

        access_token = token_data.get("access_token")
        claims = await self._verify_id_token(
            id_token,
            access_token if isinstance(access_token, str) else None,
        )

        token_nonce = claims.get("nonce")
        if not isinstance(token_nonce, str) or not secrets.compare_digest(
            token_nonce.encode("utf-8"), nonce.encode("utf-8")
        ):
            raise ExchangeError(ExchangeErrorReason.NONCE_MISMATCH, "Nonce mismatch")

        return _identity_from_claims(claims)

    async def _request_tokens(self, code: str) -> Dict[str, Any]:
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_url,
        }

        client_secret = self.config.client_secret.get_secret_value()
        auth = None
        if self._uses_client_secret_post():
            payload["client_id"] = self.config.client_id
            payload["client_secret"] = client_secret
        else:
            # RFC 6749 2.3.1: credentials are form-encoded before Basic auth.
            auth = httpx.BasicAuth(
                quote(self.config.client_id, safe=""),
                quote(client_secret, safe=""),
            )

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self.config.token_endpoint,
                    data=payload,
                    auth=auth,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Token endpoint unreachable: {e}")
            raise ExchangeError(
                ExchangeErrorReason.TRANSPORT_FAILURE,
                "Unable to communicate with authentication service",
            ) from e

        if response.status_code >= 500:
            raise ExchangeError(
                ExchangeErrorReason.TRANSPORT_FAILURE,
                f"Authentication service error (HTTP {response.status_code})",
            )

        if not response.is_success:
            error_msg = _token_error_message(response)
            logger.warning(
                "Token exchange rejected",
                extra={"status_code": response.status_code, "error": error_msg},
            )
            raise ExchangeError(
                ExchangeErrorReason.INVALID_CODE,
                f"Token exchange failed: {error_msg}",
            )

        try:
            token_data = response.json()
        except ValueError as e:
            raise ExchangeError(
                ExchangeErrorReason.INVALID_RESPONSE,
                "Token response is not valid JSON",
            ) from e

        if not isinstance(token_data, dict):
            raise ExchangeError(ExchangeErrorReason.INVALID_RESPONSE, "Token response is not an object")

        return token_data

    def _uses_client_secret_post(self) -> bool:
        methods = self.config.token_endpoint_auth_methods_supported
        return "client_secret_basic" not in methods and "client_secret_post" in methods

    # =========================================================================
    # ID Token Verification
    # =========================================================================

    async def _verify_id_token(self, id_token: str, access_token: Optional[str]) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(id_token)
        except JWTError as e:
            raise ExchangeError(ExchangeErrorReason.INVALID_RESPONSE, "ID token is malformed") from e

        algorithm = header.get("alg")
        if algorithm not in self._algorithms:
            raise ExchangeError(
                ExchangeErrorReason.SIGNATURE_INVALID,
                f"ID token signed with unsupported algorithm: {algorithm}",
            )

        keys = await self._signing_keys(header.get("kid"), algorithm)

        try:
            claims = jwt.decode(
                id_token,
                {"keys": keys},
                algorithms=[algorithm],
                audience=self.config.client_id,
                issuer=self.config.issuer,
                access_token=access_token,
                options={"leeway": ID_TOKEN_LEEWAY_SECONDS},
            )
        except ExpiredSignatureError as e:
            raise ExchangeError(ExchangeErrorReason.TOKEN_EXPIRED, "ID token has expired") from e
        except JWTClaimsError as e:
            raise ExchangeError(ExchangeErrorReason.CLAIMS_INVALID, f"Invalid token claims: {e}") from e
        except JWTError as e:
            raise ExchangeError(
                ExchangeErrorReason.SIGNATURE_INVALID,
                f"Token verification failed: {e}",
            ) from e

        for claim in ("sub", "aud", "exp"):
            if claim not in claims:
                raise ExchangeError(
                    ExchangeErrorReason.CLAIMS_INVALID,
                    f"ID token missing required claim '{claim}'",
                )

        audience = claims["aud"]
        if isinstance(audience, list) and len(audience) > 1 and claims.get("azp") != self.config.client_id:
            raise ExchangeError(
                ExchangeErrorReason.CLAIMS_INVALID,
                "ID token issued to several audiences without this client as authorized party",
            )

        return claims

    async def _signing_keys(self, kid: Optional[str], algorithm: str) -> List[Dict[str, Any]]:
        """
        Find the JWKS keys that may have signed a token.

        Refreshes the cached JWKS once if it is stale or has no matching
        key, in case the provider rotated its keys.
        """
        refreshed = False
        if time.monotonic() - self._jwks_fetched_at >= self._jwks_cache_seconds:
            await self._refresh_jwks()
            refreshed = True

        keys = _matching_keys(self._jwks, kid, algorithm)
        if not keys and not refreshed:
            await self._refresh_jwks()
            keys = _matching_keys(self._jwks, kid, algorithm)

        if not keys:
            raise ExchangeError(
                ExchangeErrorReason.SIGNATURE_INVALID,
                "Unable to find matching signing key in JWKS",
            )

        return keys

    async def _refresh_jwks(self) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                jwks = await _get_json(client, self.config.jwks_uri)
        except httpx.HTTPError as e:
            raise ExchangeError(
                ExchangeErrorReason.TRANSPORT_FAILURE,
                "Unable to fetch provider signing keys",
            ) from e
        except ValueError as e:
            raise ExchangeError(
                ExchangeErrorReason.INVALID_RESPONSE,
                "Provider signing keys are not valid JSON",
            ) from e

        if not _is_jwks(jwks):
            raise ExchangeError(
                ExchangeErrorReason.INVALID_RESPONSE,
                "Invalid JWKS response: missing 'keys' field",
            )

        self._jwks = jwks
        self._jwks_fetched_at = time.monotonic()
        logger.info("Refreshed provider JWKS", extra={"keys": len(jwks["keys"])})


# =============================================================================
# Helpers
# =============================================================================

async def _get_json(client: httpx.AsyncClient, url: str) -> Any:
    """
    GET a JSON document.

    Raises:
        httpx.HTTPError: On transport failure or non-2xx status
        ValueError: If the body is not JSON
    """
    response = await client.get(url, headers={"Accept": "application/json"})
    response.raise_for_status()
    return response.json()


def _is_jwks(document: Any) -> bool:
    return isinstance(document, dict) and isinstance(document.get("keys"), list)


def _string_list(metadata: Dict[str, Any], field: str) -> Optional[List[str]]:
    value = metadata.get(field)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise DiscoveryError(f"Provider metadata field '{field}' must be a list of strings")
    return value


def _build_provider_config(
    metadata: Any,
    issuer_url: str,
    client_id: str,
    client_secret: str,
    redirect_url: str,
    scopes: Sequence[str],
) -> ProviderConfig:
    """
    Validate discovery metadata and combine it with the client credentials.

    Raises:
        DiscoveryError: If required metadata is missing, of the wrong type
                        or inconsistent
    """
    if not isinstance(metadata, dict):
        raise DiscoveryError("Provider metadata is not a JSON object")

    missing = [field for field in REQUIRED_METADATA if not metadata.get(field)]
    if missing:
        raise DiscoveryError(f"Provider metadata missing required fields: {', '.join(missing)}")

    for field in (*REQUIRED_METADATA, "userinfo_endpoint"):
        value = metadata.get(field)
        if value is not None and not isinstance(value, str):
            raise DiscoveryError(f"Provider metadata field '{field}' must be a string")

    issuer = metadata["issuer"]
    if issuer.rstrip("/") != issuer_url.rstrip("/"):
        raise DiscoveryError(f"Issuer mismatch: expected {issuer_url}, provider reports {issuer}")

    response_types = _string_list(metadata, "response_types_supported")
    if response_types is not None and "code" not in response_types:
        raise DiscoveryError("Provider does not support the authorization code flow")

    algorithms = _string_list(metadata, "id_token_signing_alg_values_supported") or ["RS256"]
    if not any(alg in SUPPORTED_SIGNING_ALGORITHMS for alg in algorithms):
        raise DiscoveryError(f"No supported ID token signing algorithm in {algorithms}")

    auth_methods = _string_list(metadata, "token_endpoint_auth_methods_supported") or ["client_secret_basic"]

    return ProviderConfig(
        issuer=issuer,
        client_id=client_id,
        client_secret=client_secret,
        redirect_url=redirect_url,
        authorization_endpoint=metadata["authorization_endpoint"],
        token_endpoint=metadata["token_endpoint"],
        jwks_uri=metadata["jwks_uri"],
        userinfo_endpoint=metadata.get("userinfo_endpoint"),
        id_token_signing_alg_values_supported=tuple(algorithms),
        token_endpoint_auth_methods_supported=tuple(auth_methods),
        scopes=tuple(dict.fromkeys(["openid", *scopes])),
    )


def _matching_keys(jwks: Dict[str, Any], kid: Optional[str], algorithm: str) -> List[Dict[str, Any]]:
    key_type = "EC" if algorithm.startswith("ES") else "RSA"

    matches = []
    for key in jwks.get("keys", []):
        if not isinstance(key, dict) or key.get("kty") != key_type:
            continue
        if key.get("use") not in (None, "sig"):
            continue
        if key.get("alg") not in (None, algorithm):
            continue
        if kid is not None and key.get("kid") != kid:
            continue
        matches.append(key)

    return matches


def _token_error_message(response: httpx.Response) -> str:
    try:
        error_data = response.json()
    except ValueError:
        error_data = {}

    if not isinstance(error_data, dict):
        error_data = {}

    return error_data.get("error_description") or error_data.get("error") or f"HTTP {response.status_code}"


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _identity_from_claims(claims: Dict[str, Any]) -> IdentityClaims:
    audience = claims["aud"]
    try:
        return IdentityClaims(
            subject=claims["sub"],
            issuer=claims["iss"],
            audience=[audience] if isinstance(audience, str) else list(audience),
            expires_at=_timestamp(claims["exp"]),
            issued_at=_timestamp(claims.get("iat")),
            name=claims.get("name"),
            email=claims.get("email"),
            email_verified=claims.get("email_verified"),
        )
    except (ValidationError, TypeError, ValueError, OverflowError, OSError) as e:
        raise ExchangeError(ExchangeErrorReason.CLAIMS_INVALID, f"Invalid token claims: {e}") from e
