# model/profiles.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import delete, select

from ..helpers import now_ts
from ..infra.sql import GatedAsyncSession
from .db import CATEGORIES, CONDITIONS, UserListing, UserProfile, to_dict


def _default_profile(user_id: str, email: str = "") -> Dict[str, Any]:
    return {
        "id": user_id,
        "display_name": "",
        "email": email,
        "bio": "",
        "trade_in_credit": 0.0,
        "total_sales": 0,
        "expo_push_token": None,
        "updated_at": None,
    }


async def get_profile(
    db: GatedAsyncSession, user_id: str, email: str = ""
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            row = await db.session.get(UserProfile, user_id)
    return to_dict(row) if row is not None else _default_profile(
        user_id, email
    )


async def _get_or_new(
    db: GatedAsyncSession, user_id: str, email: str
) -> UserProfile:
    row = await db.session.get(UserProfile, user_id)
    if row is None:
        row = UserProfile(
            id=user_id, email=email, display_name="", bio="",
            trade_in_credit=0.0, total_sales=0,
        )
        db.session.add(row)
    elif email and not row.email:
        row.email = email
    return row


async def update_profile(
    db: GatedAsyncSession,
    user_id: str,
    email: str,
    display_name: str,
    bio: Optional[str] = None,
) -> Dict[str, Any]:
    """Upsert name and bio; credit and sales are owned by the shop."""
    display_name = (display_name or "").strip()
    if not display_name:
        raise HTTPException(400, detail="display_name is required")
    async with db.gated():
        async with db.session.begin():
            row = await _get_or_new(db, user_id, email)
            row.display_name = display_name
            row.bio = (bio or "").strip()
            row.updated_at = now_ts()
    return to_dict(row)


async def register_push_token(
    db: GatedAsyncSession, user_id: str, email: str, token: str
) -> Dict[str, Any]:
    token = (token or "").strip()
    if not token:
        raise HTTPException(400, detail="token is required")
    async with db.gated():
        async with db.session.begin():
            row = await _get_or_new(db, user_id, email)
            row.expo_push_token = token
            row.updated_at = now_ts()
    logger.debug("push token registered for user {}", user_id)
    return {"ok": True}


# ------------------------------------------------------------------------------
# Sell & trade listings
# ------------------------------------------------------------------------------

async def list_user_listings(
    db: GatedAsyncSession, user_id: str
) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(UserListing)
                .where(UserListing.user_id == user_id)
                .order_by(UserListing.created_at.desc())
            )).scalars().all()
    return [to_dict(r) for r in rows]


async def create_listing(
    db: GatedAsyncSession,
    user_id: str,
    title: str,
    system: str,
    asking_price: Optional[float],
    condition: str = "Good",
    category: str = "Games",
    description: Optional[str] = None,
) -> Dict[str, Any]:
    title = (title or "").strip()
    system = (system or "").strip()
    if not title or not system or asking_price is None:
        raise HTTPException(
            400, detail="Title, system and asking price are required"
        )
    if asking_price <= 0:
        raise HTTPException(400, detail="Asking price must be > 0")
    if condition not in CONDITIONS:
        raise HTTPException(400, detail=f"Unknown condition: {condition}")
    if category not in CATEGORIES:
        raise HTTPException(400, detail=f"Unknown category: {category}")

    row = UserListing(
        user_id=user_id,
        title=title,
        system=system,
        asking_price=float(asking_price),
        condition=condition,
        category=category,
        description=(description or "").strip(),
        status="active",
    )
    async with db.gated():
        async with db.session.begin():
            db.session.add(row)
    return to_dict(row)


async def delete_listing(
    db: GatedAsyncSession, user_id: str, listing_id: str
) -> None:
    async with db.gated():
        async with db.session.begin():
            res = await db.session.execute(
                delete(UserListing).where(
                    UserListing.id == listing_id,
                    UserListing.user_id == user_id,
                )
            )
    if res.rowcount == 0:
        raise HTTPException(404, detail="Listing not found")
