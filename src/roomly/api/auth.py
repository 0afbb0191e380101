"""Bearer-token authentication (external identity provider boundary).

Tokens are RS256 JWTs issued by an OIDC provider. The signing keys come
from the provider's JWKS document, cached for ten minutes and refetched
once when a token names an unknown key or fails signature verification
(key rotation). The ``sub`` claim resolves a row in ``users``.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import Depends, HTTPException, Request

from roomly.infra.db import txn
from roomly.infra.repositories.users_repository import get_user_by_subject
from roomly.observability.logging import get_logger

logger = get_logger(__name__)

_JWKS_CACHE_TTL = 600

_jwks_cache: dict[str, Any] | None = None
_jwks_cache_time: float = 0
_jwks_cache_lock = threading.Lock()


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""

    id: str
    external_subject: str
    email: str | None
    name: str | None


@dataclass(frozen=True)
class OidcSettings:
    issuer: str | None
    audience: str | None
    jwks_url: str | None
    authorized_parties: tuple[str, ...]

    @property
    def configured(self) -> bool:
        return bool(self.issuer and self.audience and self.jwks_url)


def _oidc_settings() -> OidcSettings:
    raw_parties = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
    return OidcSettings(
        issuer=os.environ.get("OIDC_ISSUER"),
        audience=os.environ.get("OIDC_AUDIENCE"),
        jwks_url=os.environ.get("OIDC_JWKS_URL"),
        authorized_parties=tuple(p.strip() for p in raw_parties.split(",") if p.strip()),
    )


def _unauthorized(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def _get_jwks(jwks_url: str, force_refresh: bool = False) -> dict[str, Any]:
    """Return the JWKS document, from cache while fresh."""
    global _jwks_cache, _jwks_cache_time

    with _jwks_cache_lock:
        now = time.time()
        if not force_refresh and _jwks_cache is not None and now - _jwks_cache_time < _JWKS_CACHE_TTL:
            return _jwks_cache
        try:
            _jwks_cache = _fetch_jwks(jwks_url)
        except requests.RequestException:
            logger.warning("jwks fetch failed")
            raise HTTPException(status_code=503, detail="Auth temporarily unavailable") from None
        _jwks_cache_time = now
        return _jwks_cache


def _find_key(jwks: dict[str, Any], kid: str) -> dict[str, Any] | None:
    return next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)


def _decode(token: str, jwk_data: dict[str, Any], settings: OidcSettings) -> dict[str, Any]:
    try:
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(jwk_data)
    except (ValueError, TypeError, KeyError):
        raise _unauthorized() from None
    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        issuer=settings.issuer,
        audience=settings.audience,
        options={"require": ["exp", "iss", "aud", "sub"]},
    )


def verify_token(token: str) -> str:
    """Verify a bearer JWT and return its subject.

    Raises:
        HTTPException: 401 for any invalid or expired token, 503 when the
            key set cannot be fetched.
    """
    settings = _oidc_settings()
    if not settings.configured:
        raise _unauthorized("OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise _unauthorized() from None
    if not kid:
        raise _unauthorized()

    key_data = _find_key(_get_jwks(settings.jwks_url), kid)
    if key_data is None:
        key_data = _find_key(_get_jwks(settings.jwks_url, force_refresh=True), kid)
    if key_data is None:
        raise _unauthorized()

    try:
        payload = _decode(token, key_data, settings)
    except jwt.InvalidSignatureError:
        key_data = _find_key(_get_jwks(settings.jwks_url, force_refresh=True), kid)
        if key_data is None:
            raise _unauthorized() from None
        try:
            payload = _decode(token, key_data, settings)
        except jwt.InvalidTokenError:
            raise _unauthorized() from None
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired") from None
    except jwt.InvalidTokenError:
        raise _unauthorized() from None

    if settings.authorized_parties and "azp" in payload:
        if payload["azp"] not in settings.authorized_parties:
            raise _unauthorized()

    sub = payload.get("sub")
    if not sub:
        raise _unauthorized()
    return sub


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise _unauthorized("Missing authorization header")

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header")
    return parts[1]


def _get_user_from_db(external_subject: str) -> CurrentUser | None:
    with txn() as cur:
        row = get_user_by_subject(cur, external_subject)
    if row is None:
        return None
    return CurrentUser(**row)


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: the authenticated caller.

    Raises:
        HTTPException: 401 if the token is missing or invalid, 403 if no
            user exists for the token subject.
    """
    sub = verify_token(_extract_bearer_token(request))
    user = _get_user_from_db(sub)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    return user


CurrentUserDep = Depends(get_current_user)
