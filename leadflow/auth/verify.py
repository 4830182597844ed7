"""
verify.py
---------
Purpose:
    Bearer token verification for API routes.

Notes:
    - Tokens are HS256 JWTs issued by the login service.
    - Claims used here: `sub` (agent key), `tenant_id`, `role`.
    - Provides `auth_dependency` for protected routes and
      `get_admin_context` in auth/tenant.py for admin-only ones.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from leadflow.config import settings

REQUIRED_CLAIMS = ("sub", "tenant_id")

_security = HTTPBearer()


def verify_jwt(token: str) -> dict:
    if not settings.JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )

    try:
        decoded = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": True, "require": ["exp", *REQUIRED_CLAIMS]},
        )
    except jwt.PyJWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    decoded.setdefault("role", "agent")
    return decoded


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)
