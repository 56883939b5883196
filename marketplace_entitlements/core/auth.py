from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

import requests
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.errors import AuthenticationError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class AuthContext:
    tenant_id: str
    user_id: str
    email: str | None = None
    name: str | None = None
    claims: dict = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class TokenPolicy:
    jwks_url: str
    issuer: str
    audience: str
    algorithms: tuple[str, ...]


def webhook_token_policy() -> TokenPolicy:
    return TokenPolicy(
        jwks_url=settings.webhook_jwks_url,
        issuer=settings.webhook_issuer,
        audience=settings.webhook_audience,
        algorithms=tuple(settings.webhook_algorithms()),
    )


def user_token_policy() -> TokenPolicy:
    return TokenPolicy(
        jwks_url=settings.user_jwks_url,
        issuer=settings.user_issuer,
        audience=settings.user_audience or settings.oauth_client_id,
        algorithms=("RS256",),
    )


class JwksCache:
    """Key sets per discovery URL, refreshed on TTL expiry or on an unknown key id."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self.ttl_seconds = ttl_seconds
        self._jwks: dict[str, dict] = {}
        self._fetched_at: dict[str, float] = {}

    def get(self, url: str, *, force_refresh: bool = False) -> dict:
        jwks, _ = self._load(url, force_refresh=force_refresh)
        return jwks

    def _load(self, url: str, *, force_refresh: bool = False) -> tuple[dict, bool]:
        now = time.time()
        cached = self._jwks.get(url)
        if not force_refresh and cached is not None and (now - self._fetched_at.get(url, 0.0)) <= self.ttl_seconds:
            return cached, False

        try:
            response = requests.get(url, timeout=5)
            response.raise_for_status()
            cached = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise AuthenticationError("Signing keys could not be retrieved") from exc
        self._jwks[url] = cached
        self._fetched_at[url] = now
        return cached, True

    def find_key(self, url: str, kid: str) -> dict | None:
        jwks, fetched = self._load(url)
        key = _match_key(jwks, kid)
        if key is None and not fetched:
            # One refetch for keys rotated since the last fetch, then give up.
            key = _match_key(self.get(url, force_refresh=True), kid)
        return key


def _match_key(jwks: dict, kid: str) -> dict | None:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


jwks_cache = JwksCache(ttl_seconds=settings.jwks_cache_ttl_seconds)


def verify_signed_token(token: str, policy: TokenPolicy, cache: JwksCache | None = None) -> dict:
    cache = cache or jwks_cache
    if not policy.issuer or not policy.audience:
        raise AuthenticationError("Token issuer and audience are not configured")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise AuthenticationError("Invalid token header") from exc

    if header.get("alg") not in policy.algorithms:
        raise AuthenticationError("Unexpected token algorithm")

    kid = header.get("kid")
    if not kid:
        raise AuthenticationError("Token is missing key id")

    key = cache.find_key(policy.jwks_url, kid)
    if key is None:
        raise AuthenticationError("No matching signing key found")

    try:
        return jwt.decode(
            token,
            key,
            algorithms=list(policy.algorithms),
            issuer=policy.issuer,
            audience=policy.audience,
            options={"require_exp": True},
        )
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc


async def require_marketplace_webhook(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    try:
        return await asyncio.to_thread(
            verify_signed_token, credentials.credentials, webhook_token_policy()
        )
    except AuthenticationError as exc:
        logger.warning("Rejected marketplace webhook token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid marketplace token",
        ) from exc


async def require_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthContext:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    try:
        claims = await asyncio.to_thread(
            verify_signed_token, credentials.credentials, user_token_policy()
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc

    tenant_id = claims.get("tid")
    user_id = claims.get("oid") or claims.get("sub")
    if not tenant_id or not user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token is missing required claims",
        )

    request.state.tenant_id = tenant_id
    request.state.auth_claims = claims
    request.state.user_subject = user_id

    return AuthContext(
        tenant_id=tenant_id,
        user_id=user_id,
        email=claims.get("email") or claims.get("preferred_username") or claims.get("upn"),
        name=claims.get("name"),
        claims=claims,
    )
