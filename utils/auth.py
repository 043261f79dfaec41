import uuid
import datetime
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

import jwt
from fastapi.security import OAuth2PasswordBearer
from fastapi import Depends, HTTPException, status

from config import Config

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


@dataclass(frozen=True)
class Principal:
    """Verified caller identity handed to every workflow operation."""
    user_id: uuid.UUID
    roles: FrozenSet[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def create_access_token(data: dict, expires_delta: Optional[datetime.timedelta] = None):
    to_encode = data.copy()
    expire = datetime.datetime.now(datetime.timezone.utc) + (
        expires_delta or datetime.timedelta(minutes=Config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, Config.SECRET_KEY, algorithm=ALGORITHM)


def token_for(user_id: uuid.UUID, roles: Iterable[str] = ()) -> str:
    return create_access_token({"sub": str(user_id), "roles": list(roles)})


def decode_access_token(token: str):
    try:
        payload = jwt.decode(token, Config.SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    payload = decode_access_token(token)
    if "sub" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token data")

    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user ID format")

    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        logger.warning(f"Ignoring malformed roles claim for user {user_id}")
        roles = []
    return Principal(user_id=user_id, roles=frozenset(str(r) for r in roles))
