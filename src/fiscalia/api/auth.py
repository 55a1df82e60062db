"""OIDC JWT authentication for end users.

Provides:
- verify_token(): Validates JWT and returns the claims we use
- get_current_user(): FastAPI dependency resolving the caller's account
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt
import requests
from fastapi import Depends, HTTPException, Request

from fiscalia.domain.plans import AccountContext
from fiscalia.infra.cache import TTLCache

JWKS_CACHE_TTL = timedelta(minutes=10)

_jwks_cache: TTLCache[dict[str, Any]] = TTLCache(JWKS_CACHE_TTL, max_entries=4)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""

    account: AccountContext
    external_subject: str
    email: str | None = None

    @property
    def account_id(self) -> str:
        return self.account.id


def _get_settings() -> dict[str, Any]:
    """Load OIDC settings from environment."""
    parties_raw = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
    parties = [p.strip() for p in parties_raw.split(",") if p.strip()] or None
    return {
        "issuer": os.environ.get("OIDC_ISSUER"),
        "audience": os.environ.get("OIDC_AUDIENCE"),
        "jwks_url": os.environ.get("OIDC_JWKS_URL"),
        "authorized_parties": parties,
    }


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def _get_jwks(jwks_url: str, force_refresh: bool = False) -> dict[str, Any]:
    """JWKS document, cached for JWKS_CACHE_TTL."""
    if force_refresh:
        _jwks_cache.invalidate(jwks_url)
    try:
        return _jwks_cache.get_or_load(jwks_url, lambda: _fetch_jwks(jwks_url))
    except requests.RequestException:
        raise HTTPException(status_code=503, detail="Auth temporarily unavailable")


def _find_key(jwks: dict[str, Any], kid: str) -> dict[str, Any] | None:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def verify_token(token: str) -> dict[str, Any]:
    """Verify a JWT and return its claims.

    Args:
        token: JWT string.

    Returns:
        Decoded claims; ``sub`` is guaranteed present.

    Raises:
        HTTPException: 401 if the token is invalid, 503 if JWKS is unreachable.
    """
    settings = _get_settings()
    issuer = settings["issuer"]
    audience = settings["audience"]
    jwks_url = settings["jwks_url"]
    if not issuer or not audience or not jwks_url:
        raise HTTPException(status_code=401, detail="OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not kid:
        raise HTTPException(status_code=401, detail="Invalid token")

    key_data = _find_key(_get_jwks(jwks_url), kid)
    if key_data is None:
        # Key rotation: refresh once
        key_data = _find_key(_get_jwks(jwks_url, force_refresh=True), kid)
    if key_data is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(key_data)
        claims = jwt.decode(
            token,
            public_key,
            algorithms=["RS256"],
            issuer=issuer,
            audience=audience,
            options={"require": ["exp", "iss", "aud", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.InvalidTokenError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    parties = settings["authorized_parties"]
    if parties and "azp" in claims and claims["azp"] not in parties:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return parts[1]


def _resolve_account(external_subject: str, email: str | None) -> AccountContext:
    from fiscalia.infra.db import txn
    from fiscalia.infra.repositories.accounts_repository import get_or_create_account

    with txn() as cur:
        return get_or_create_account(cur, external_subject=external_subject, email=email)


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: authenticated caller with its account.

    The account is created on first login (trial plan).

    Raises:
        HTTPException: 401 if the token is missing or invalid.
    """
    claims = verify_token(_extract_bearer_token(request))
    email = claims.get("email")
    account = _resolve_account(claims["sub"], email)
    return CurrentUser(account=account, external_subject=claims["sub"], email=email)


CurrentUserDep = Depends(get_current_user)
