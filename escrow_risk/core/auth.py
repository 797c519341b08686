"""
Keycloak bearer-token checks for the escrow API.

Callers are the marketplace backend (service account), the admin console
and the processor webhook relay. Tokens are RS256-signed by the realm and
verified against its JWKS. Admin routes additionally require
`settings.admin_role` in the token's realm or client roles.

AUTH_ENABLED=false short-circuits verification for local development.
"""
from __future__ import annotations

from typing import Optional

import httpx
import structlog
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from escrow_risk.core.config import Settings, get_settings

logger = structlog.get_logger()
bearer = HTTPBearer(auto_error=False)

_jwks_by_realm: dict[str, dict] = {}


async def _load_jwks(realm_url: str, refresh: bool = False) -> dict:
    if not refresh and realm_url in _jwks_by_realm:
        return _jwks_by_realm[realm_url]
    async with httpx.AsyncClient(timeout=5.0) as client:
        resp = await client.get(f"{realm_url}/protocol/openid-connect/certs")
        resp.raise_for_status()
    _jwks_by_realm[realm_url] = resp.json()
    return _jwks_by_realm[realm_url]


async def _signing_key(token: str, realm_url: str) -> Optional[dict]:
    """JWK matching the token's `kid`. Refetches once so rotated realm keys are picked up."""
    kid = jwt.get_unverified_header(token).get("kid")
    for refresh in (False, True):
        jwks = await _load_jwks(realm_url, refresh=refresh)
        for candidate in jwks.get("keys", []):
            if candidate.get("kid") == kid:
                return candidate
    return None


def token_roles(payload: dict) -> set[str]:
    """Realm roles plus the flat `roles` claim some clients map."""
    roles = set(payload.get("roles") or [])
    roles.update((payload.get("realm_access") or {}).get("roles") or [])
    return roles


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Decoded claims of a valid bearer token (401 otherwise)."""
    if not settings.auth_enabled:
        return {"sub": "dev-user", "roles": [settings.admin_role]}

    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    try:
        key = await _signing_key(credentials.credentials, settings.keycloak_url)
        if key is None:
            raise HTTPException(status_code=401, detail="Unknown token signing key")
        return jwt.decode(
            credentials.credentials,
            key,
            algorithms=["RS256"],
            audience=settings.keycloak_audience,
            issuer=settings.keycloak_url,
        )
    except JWTError as e:
        logger.warning("jwt_validation_failed", error=str(e))
        raise HTTPException(status_code=401, detail=f"Token validation failed: {e}")
    except httpx.HTTPError as e:
        logger.error("jwks_unavailable", realm=settings.keycloak_url, error=str(e))
        raise HTTPException(status_code=503, detail="Identity provider unavailable")


async def require_admin(
    token: dict = Depends(verify_token),
    settings: Settings = Depends(get_settings),
) -> dict:
    if settings.admin_role not in token_roles(token):
        logger.warning("admin_role_missing", sub=token.get("sub"))
        raise HTTPException(status_code=403, detail=f"Requires role '{settings.admin_role}'")
    return token
