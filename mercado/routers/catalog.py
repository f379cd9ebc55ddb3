from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.identity import CurrentUser, current_user, require_store
from ..db import get_db
from ..services.catalog import CatalogLookup, ProductRecord
from ..services.datastore import DataStore

router = APIRouter(prefix="/catalog", tags=["catalog"])


def _serialize(p: ProductRecord) -> dict:
    return {
        "product_id": p.id,
        "name": p.name,
        "price": str(p.price),
        "stock_quantity": p.stock_quantity,
        "unit": p.unit,
        "barcode": p.barcode,
    }


def _catalog(db: Session, user: Optional[CurrentUser]) -> CatalogLookup:
    return CatalogLookup(DataStore(db), require_store(user))


@router.get("/products")
def list_products(db: Session = Depends(get_db), user: Optional[CurrentUser] = Depends(current_user)):
    products = _catalog(db, user).reload()
    return {"count": len(products), "products": [_serialize(p) for p in products.values()]}


@router.get("/scan/{barcode}")
def scan_barcode(barcode: str, db: Session = Depends(get_db), user: Optional[CurrentUser] = Depends(current_user)):
    return _serialize(_catalog(db, user).find_by_barcode(barcode))


@router.get("/search")
def search_products(
    q: str = Query(default=""),
    limit: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(current_user),
):
    found = _catalog(db, user).search(q, limit)
    return {"query": q, "count": len(found), "products": [_serialize(p) for p in found]}
