# model/inventory.py
"""
Back-office stock management and the CSV round trip.

CSV columns (header row required):

    id, sku, barcode, title, system, category, condition, price, cost_price,
    supplier, stock_qty, low_stock_threshold, featured, image_url, description

Import upserts on `sku` when any row carries one, otherwise on `id`.
"""

from __future__ import annotations
import csv
import io
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError

from .. import config
from ..helpers import normalize_bool, normalize_number
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from .db import CATEGORIES, CONDITIONS, Product, to_dict

CSV_COLUMNS = [
    "id", "sku", "barcode", "title", "system", "category", "condition",
    "price", "cost_price", "supplier", "stock_qty", "low_stock_threshold",
    "featured", "image_url", "description",
]

FILTERS = ("all", "low", "featured")


def is_low(p: Product) -> bool:
    thr = p.low_stock_threshold
    if thr is None:
        thr = config.DEFAULT_LOW_STOCK_THRESHOLD
    return (p.stock_qty or 0) <= thr


async def inventory(
    db: GatedAsyncSession, filter: str = "all", search: Optional[str] = None,
) -> Dict[str, Any]:
    if filter not in FILTERS:
        raise HTTPException(400, detail=f"Unknown filter: {filter}")
    async with db.gated():
        async with db.session.begin():
            products = (await db.session.execute(
                select(Product).order_by(Product.title)
            )).scalars().all()

    low_count = sum(1 for p in products if is_low(p))
    if filter == "low":
        products = [p for p in products if is_low(p)]
    elif filter == "featured":
        products = [p for p in products if p.featured]
    if search and search.strip():
        s = search.strip().lower()
        products = [
            p for p in products
            if s in p.title.lower() or s in p.system.lower()
            or s in (p.category or "").lower()
        ]
    return {
        "items": [to_dict(p) | {"is_low": is_low(p)} for p in products],
        "low_stock_count": low_count,
    }


async def bump_stock(
    db: GatedAsyncSession, product_id: str, delta: int
) -> Dict[str, Any]:
    """Apply `delta` in SQL so concurrent bumps don't lose updates."""
    new_qty = func.coalesce(Product.stock_qty, 0) + delta
    async with db.gated():
        async with db.session.begin():
            res = await db.session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock_qty=case((new_qty < 0, 0), else_=new_qty))
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise HTTPException(404, detail="Product not found")
            p = await db.session.get(Product, product_id)
    return to_dict(p)


async def set_stock(
    db: GatedAsyncSession,
    product_id: str,
    stock_qty: int,
    low_stock_threshold: Optional[int] = None,
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            p = await db.session.get(Product, product_id)
            if p is None:
                raise HTTPException(404, detail="Product not found")
            p.stock_qty = max(0, stock_qty)
            if low_stock_threshold is not None:
                p.low_stock_threshold = max(0, low_stock_threshold)
    return to_dict(p)


async def toggle_featured(
    db: GatedAsyncSession, product_id: str
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            p = await db.session.get(Product, product_id)
            if p is None:
                raise HTTPException(404, detail="Product not found")
            p.featured = not p.featured
    return to_dict(p)


# ------------------------------------------------------------------------------
# CSV
# ------------------------------------------------------------------------------

async def export_csv(db: GatedAsyncSession) -> str:
    async with db.gated():
        async with db.session.begin():
            products = (await db.session.execute(
                select(Product).order_by(Product.created_at)
            )).scalars().all()
    if not products:
        raise HTTPException(404, detail="No products found")

    buf = io.StringIO()
    w = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, lineterminator="\n")
    w.writeheader()
    for p in products:
        w.writerow({
            k: ("" if getattr(p, k) is None else getattr(p, k))
            for k in CSV_COLUMNS
        })
    return buf.getvalue()


def _text(r: dict, key: str) -> str:
    return str(r.get(key) or "").strip()


def parse_csv(text: str) -> List[Dict[str, Any]]:
    """Rows -> product values, with lenient number/boolean parsing."""
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    rows = []
    for r in reader:
        if not any((v or "").strip() for v in r.values() if isinstance(v, str)):
            continue
        row: Dict[str, Any] = {}
        for k in ("id", "sku", "barcode"):
            if _text(r, k):
                row[k] = _text(r, k)
        row["title"] = _text(r, "title")
        row["system"] = _text(r, "system")
        row["category"] = _text(r, "category")
        row["condition"] = _text(r, "condition") or "Good"
        row["description"] = _text(r, "description")
        row["image_url"] = _text(r, "image_url") or None

        price = normalize_number(r.get("price"))
        row["price"] = price if price is not None else 0.0
        row["cost_price"] = normalize_number(r.get("cost_price"))
        row["supplier"] = _text(r, "supplier") or None

        stock = normalize_number(r.get("stock_qty"))
        row["stock_qty"] = max(0, int(stock)) if stock is not None else 0
        thr = normalize_number(r.get("low_stock_threshold"))
        row["low_stock_threshold"] = (
            max(0, int(thr)) if thr is not None
            else config.DEFAULT_LOW_STOCK_THRESHOLD
        )
        row["featured"] = normalize_bool(r.get("featured"))
        rows.append(row)
    return rows


async def _upsert(
    db: GatedAsyncSession, rows: List[Dict[str, Any]], key: str
) -> tuple[int, int]:
    inserted = updated = 0
    for row in rows:
        k = row.get(key)
        existing = None
        if k:
            existing = (await db.session.execute(
                select(Product.id).where(getattr(Product, key) == k)
            )).scalar_one_or_none()
        if existing is not None:
            values = {c: v for c, v in row.items() if c != "id"}
            await db.session.execute(
                update(Product)
                .where(Product.id == existing)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            updated += 1
        else:
            db.session.add(Product(**row))
            inserted += 1
            # later rows may match this one
            await db.session.flush()
    return inserted, updated


async def import_csv(db: GatedAsyncSession, text: str) -> Dict[str, Any]:
    rows = parse_csv(text)
    if not rows:
        raise HTTPException(400, detail="Your CSV had no data rows.")
    if any(not (r["title"] and r["system"] and r["category"]) for r in rows):
        raise HTTPException(
            400, detail="Each row must include title, system, and category."
        )
    for r in rows:
        if r["category"] not in CATEGORIES:
            raise HTTPException(
                400,
                detail=f"Unknown category {r['category']!r} "
                       f"for {r['title']!r}.",
            )
        if r["condition"] not in CONDITIONS:
            raise HTTPException(
                400,
                detail=f"Unknown condition {r['condition']!r} "
                       f"for {r['title']!r}.",
            )

    key = "sku" if any(r.get("sku") for r in rows) else "id"
    try:
        async with timeit("db.import_csv"):
            async with db.gated():
                async with db.session.begin():
                    inserted, updated = await _upsert(db, rows, key)
    except IntegrityError as e:
        logger.warning("csv import rejected: {}", e.orig)
        raise HTTPException(
            409, detail="Import conflicts with an existing SKU or id"
        )

    logger.info(
        "csv import on {}: {} inserted, {} updated", key, inserted, updated
    )
    return {
        "upserted": inserted + updated,
        "inserted": inserted,
        "updated": updated,
        "conflict_key": key,
    }
