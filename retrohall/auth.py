from dataclasses import dataclass
from typing import Optional

from authlib.jose import JoseError, jwt
from fastapi import Depends, Header, HTTPException
from loguru import logger
from sqlalchemy import select

from . import config
from .deps import get_db
from .infra.sql import GatedAsyncSession
from .model.db import AdminUser


@dataclass
class CurrentUser:
    id: str
    email: str = ""


def decode_token(token: str) -> CurrentUser:
    """Verify an HS256 access token minted by the auth provider."""
    try:
        claims = jwt.decode(
            token,
            config.JWT_SECRET,
            claims_options={
                "sub": {"essential": True},
                "aud": {"essential": True, "value": config.JWT_AUDIENCE},
            },
        )
        claims.validate()
    except JoseError as e:
        logger.debug("token rejected: {}", e)
        raise HTTPException(status_code=401, detail="Invalid token")
    except ValueError:
        # malformed segments
        raise HTTPException(status_code=401, detail="Invalid token")
    return CurrentUser(id=str(claims["sub"]), email=claims.get("email") or "")


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token.strip()


async def current_user(
    authorization: Optional[str] = Header(default=None),
) -> CurrentUser:
    return decode_token(bearer_token(authorization))


async def optional_user(
    authorization: Optional[str] = Header(default=None),
) -> Optional[CurrentUser]:
    # anonymous browsing is fine; a bad token is still rejected
    if not authorization:
        return None
    return decode_token(bearer_token(authorization))


async def admin_row(
    db: GatedAsyncSession, user_id: str
) -> Optional[AdminUser]:
    async with db.gated():
        async with db.session.begin():
            return (await db.session.execute(
                select(AdminUser).where(AdminUser.id == user_id)
            )).scalar_one_or_none()


async def require_admin(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
) -> CurrentUser:
    if await admin_row(db, user.id) is None:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def require_owner(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
) -> CurrentUser:
    row = await admin_row(db, user.id)
    if row is None or row.role != "owner":
        raise HTTPException(status_code=403, detail="Owner access required")
    return user
