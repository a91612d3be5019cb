# backend/stockdb/security.py

"""
Acting-user resolution for stockdb.

Responsibilities:
- Decode an optional bearer JWT and expose its `sub` claim as the acting
  user id for stock movements and catalog changes.
- Fall back to the system identity when the request carries no token.

Token issuance, password handling and role management live in the
identity service; this module only reads tokens it has been handed.
"""

from __future__ import annotations

import os
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Identity recorded on movements when the caller is not a logged-in user
# (scripts, imports, unauthenticated kiosks).
SYSTEM_USER_ID = os.getenv("SYSTEM_USER_ID", "system")

bearer_scheme = HTTPBearer(auto_error=False)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_acting_user_id(token: str) -> str:
    """
    Return the `sub` claim of a signed JWT.

    Raises HTTP 401 when the token is malformed, expired or has no subject.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    user_id = payload.get("sub")
    if user_id is None or not str(user_id).strip():
        raise _credentials_exception()
    return str(user_id).strip()


def get_acting_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    FastAPI dependency: the user a movement is attributed to.
    """
    if credentials is None or not credentials.credentials:
        return SYSTEM_USER_ID
    return decode_acting_user_id(credentials.credentials)
