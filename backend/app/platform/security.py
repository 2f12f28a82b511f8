"""Bearer token resolution into an authenticated principal.

Tokens are issued by the identity service; this module only verifies them and
exposes role guards for route dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .request_context import set_principal_id

ROLE_CANDIDATE = "CANDIDATE"
ROLE_RECRUITER = "RECRUITER"
ROLE_ADMIN = "ADMIN"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str
    company_id: Optional[int] = None

    @property
    def is_recruiter(self) -> bool:
        return self.role in {ROLE_RECRUITER, ROLE_ADMIN}


def create_access_token(
    user_id: int,
    role: str,
    company_id: Optional[int] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(user_id), "role": role, "exp": expire}
    if company_id is not None:
        claims["company_id"] = company_id
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Principal:
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = int(claims["sub"])
    except (jwt.PyJWTError, KeyError, TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    company_id = claims.get("company_id")
    return Principal(
        user_id=user_id,
        role=str(claims.get("role") or "").upper(),
        company_id=int(company_id) if company_id is not None else None,
    )


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    principal = decode_token(credentials.credentials)
    set_principal_id(principal.user_id)
    return principal


def require_candidate(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != ROLE_CANDIDATE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return principal


def require_recruiter(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_recruiter:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    if principal.company_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No company associated with this account")
    return principal
