from datetime import datetime, timedelta, timezone
from typing import List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from questionbank.core.config import settings


class TokenData(BaseModel):
    sub: str
    roles: List[str]


class Principal(BaseModel):
    """The acting user, threaded explicitly through capability checks."""

    id: int
    roles: List[str] = []

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


bearer = HTTPBearer()


def create_token(user_id: str, roles: List[str], ttl_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {"sub": str(user_id), "roles": roles, "iat": int(now.timestamp()),
               "exp": int((now + timedelta(minutes=ttl)).timestamp())}
    return jwt.encode(payload, settings.SECRET_KEY.get_secret_value(), algorithm=settings.ALGORITHM)


def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> TokenData:
    try:
        payload = jwt.decode(creds.credentials, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM])
        return TokenData(sub=payload["sub"], roles=payload.get("roles", []))
    except (jwt.PyJWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")


def get_current_principal(user: TokenData = Depends(get_current_user)) -> Principal:
    try:
        user_id = int(user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token subject is not a user id")
    return Principal(id=user_id, roles=user.roles)
