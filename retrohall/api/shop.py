from typing import Optional

from fastapi import APIRouter, Depends

from ..deps import get_db
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from ..model import products

router = APIRouter(prefix="/api/products", tags=["shop"])


@router.get("")
async def list_products(
    category: Optional[str] = None,
    system: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[bool] = None,
    db: GatedAsyncSession = Depends(get_db),
):
    async with timeit("db.list_products"):
        items = await products.list_products(
            db, category=category, system=system, search=search,
            featured=featured,
        )
    return {"items": items}


@router.get("/{product_id}")
async def get_product(
    product_id: str, db: GatedAsyncSession = Depends(get_db)
):
    return await products.get_product(db, product_id)
