# model/admins.py
from __future__ import annotations
from typing import Any, Dict, List

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import delete, select

from ..infra.sql import GatedAsyncSession
from .db import ADMIN_ROLES, AdminUser, UserProfile, to_dict


def _check_role(role: str) -> str:
    if role not in ADMIN_ROLES:
        raise HTTPException(400, detail=f"Unknown role: {role}")
    return role


async def list_admins(db: GatedAsyncSession) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(AdminUser, UserProfile.email, UserProfile.display_name)
                .outerjoin(UserProfile, UserProfile.id == AdminUser.id)
                .order_by(AdminUser.created_at)
            )).all()
    out = []
    for admin, email, name in rows:
        d = to_dict(admin)
        d["email"] = email
        d["display_name"] = name
        out.append(d)
    return out


async def promote(
    db: GatedAsyncSession, user_id: str, role: str = "staff"
) -> Dict[str, Any]:
    """Grant admin access, or change the role of an existing admin."""
    user_id = (user_id or "").strip()
    if not user_id:
        raise HTTPException(400, detail="user_id is required")
    _check_role(role)
    async with db.gated():
        async with db.session.begin():
            row = await db.session.get(AdminUser, user_id)
            if row is None:
                row = AdminUser(id=user_id, role=role)
                db.session.add(row)
            else:
                row.role = role
    logger.info("admin {} granted role {}", user_id, role)
    return to_dict(row)


async def change_role(
    db: GatedAsyncSession, user_id: str, role: str
) -> Dict[str, Any]:
    _check_role(role)
    async with db.gated():
        async with db.session.begin():
            row = await db.session.get(AdminUser, user_id)
            if row is None:
                raise HTTPException(404, detail="Admin not found")
            row.role = role
    logger.info("admin {} role changed to {}", user_id, role)
    return to_dict(row)


async def remove(
    db: GatedAsyncSession, caller_id: str, user_id: str
) -> None:
    if caller_id == user_id:
        raise HTTPException(400, detail="You cannot remove yourself")
    async with db.gated():
        async with db.session.begin():
            res = await db.session.execute(
                delete(AdminUser).where(AdminUser.id == user_id)
            )
    if res.rowcount == 0:
        raise HTTPException(404, detail="Admin not found")
    logger.info("admin {} removed by {}", user_id, caller_id)
