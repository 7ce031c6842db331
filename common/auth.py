"""Bearer authentication shared by the HTTP routers.

A token is either a static per-principal token from the ``API_TOKENS`` secret
or an HS256 JWT signed with ``JWT_SECRET``. Either way the caller is identified
by its ``sub`` claim, which the ledger checks against its oracle set.
"""
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException, status

from .secrets import get_secret

__all__ = ["require_token", "current_principal"]


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def _claims_from_jwt(token: str) -> Dict[str, Any]:
    secret = get_secret("JWT_SECRET")
    if not secret:
        raise _forbidden()
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        raise _forbidden() from exc
    if not claims.get("sub"):
        raise _forbidden()
    return claims


def _principal_for_static(token: str) -> Optional[str]:
    tokens: Dict[str, str] = get_secret("API_TOKENS", {}) or {}
    for principal, expected in tokens.items():
        if token == expected:
            return principal
    return None


def require_token(authorization: str | None = Header(None)) -> Dict[str, Any]:
    """Validate the ``Authorization`` header and return the caller's claims."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _forbidden()

    # header.payload.signature
    if token.count(".") == 2:
        return _claims_from_jwt(token)

    principal = _principal_for_static(token)
    if principal is None:
        raise _forbidden()
    return {"sub": principal}


def current_principal(claims: Dict[str, Any] = Depends(require_token)) -> str:
    """Principal (``sub`` claim) of the authenticated caller."""

    return str(claims["sub"])
