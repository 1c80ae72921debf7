# model/products.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError

from .. import config
from ..infra.sql import GatedAsyncSession
from .db import CATEGORIES, CONDITIONS, Product, to_dict

# columns an admin may set through create/patch
EDITABLE = (
    "sku", "barcode", "title", "system", "year", "category", "condition",
    "price", "cost_price", "supplier", "stock_qty", "low_stock_threshold",
    "featured", "description", "image_url",
)


def search_clause(search: str, *cols):
    s = f"%{search.strip().lower()}%"
    return or_(*(c.ilike(s) for c in cols))


async def list_products(
    db: GatedAsyncSession,
    category: Optional[str] = None,
    system: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
) -> List[Dict[str, Any]]:
    q = select(Product).order_by(Product.created_at.desc())
    if category and category != "All":
        q = q.where(Product.category == category)
    if system:
        q = q.where(Product.system == system)
    if featured is not None:
        q = q.where(Product.featured == featured)
    if search and search.strip():
        q = q.where(search_clause(search, Product.title, Product.system))
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(q)).scalars().all()
    return [to_dict(p) for p in rows]


async def get_product(db: GatedAsyncSession, product_id: str) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            p = await db.session.get(Product, product_id)
    if p is None:
        raise HTTPException(404, detail="Product not found")
    return to_dict(p)


def check_values(values: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    out = {k: v for k, v in values.items() if k in EDITABLE}
    for k in ("title", "system"):
        if k in out or not partial:
            out[k] = (out.get(k) or "").strip()
            if not out[k]:
                raise HTTPException(400, detail=f"{k} is required")
    if "category" in out and out["category"] not in CATEGORIES:
        raise HTTPException(400, detail=f"Unknown category: {out['category']}")
    if "condition" in out and out["condition"] not in CONDITIONS:
        raise HTTPException(
            400, detail=f"Unknown condition: {out['condition']}"
        )
    if out.get("price") is not None and out["price"] < 0:
        raise HTTPException(400, detail="price must be >= 0")
    if out.get("stock_qty") is not None and out["stock_qty"] < 0:
        raise HTTPException(400, detail="stock_qty must be >= 0")
    if out.get("low_stock_threshold") is not None \
            and out["low_stock_threshold"] < 0:
        raise HTTPException(400, detail="low_stock_threshold must be >= 0")
    for k in ("sku", "barcode", "supplier", "image_url"):
        if k in out:
            out[k] = (out[k] or "").strip() or None
    return out


async def create_product(
    db: GatedAsyncSession, values: Dict[str, Any]
) -> Dict[str, Any]:
    fields = check_values(values, partial=False)
    fields.setdefault("low_stock_threshold", config.DEFAULT_LOW_STOCK_THRESHOLD)
    if fields.get("price") is None:
        fields["price"] = 0.0
    if fields.get("stock_qty") is None:
        fields["stock_qty"] = 0
    p = Product(**fields)
    try:
        async with db.gated():
            async with db.session.begin():
                db.session.add(p)
    except IntegrityError:
        raise HTTPException(409, detail="A product with that SKU exists")
    logger.info("product {} created: {}", p.id, p.title)
    return to_dict(p)


async def patch_product(
    db: GatedAsyncSession, product_id: str, values: Dict[str, Any]
) -> Dict[str, Any]:
    fields = check_values(values, partial=True)
    try:
        async with db.gated():
            async with db.session.begin():
                p = await db.session.get(Product, product_id)
                if p is None:
                    raise HTTPException(404, detail="Product not found")
                for k, v in fields.items():
                    setattr(p, k, v)
    except IntegrityError:
        raise HTTPException(409, detail="A product with that SKU exists")
    return to_dict(p)


async def delete_product(db: GatedAsyncSession, product_id: str) -> None:
    async with db.gated():
        async with db.session.begin():
            res = await db.session.execute(
                delete(Product).where(Product.id == product_id)
            )
    if res.rowcount == 0:
        raise HTTPException(404, detail="Product not found")
    logger.info("product {} deleted", product_id)
