import threading
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from ..core.errors import CheckoutBusy
from ..core.identity import CurrentUser, current_user, require_store, require_user
from ..db import get_db
from ..services.catalog import CatalogLookup
from ..services.datastore import DataStore
from ..services.pending import SuspendedSaleStore
from ..services.receipt import render, snapshot_from_sale
from ..services.settlement import Checkout, CheckoutState, SettlementService

router = APIRouter(prefix="/pdv", tags=["pdv"])

# Un checkout en memoria por operador (una terminal, un usuario)
_checkouts: Dict[int, Checkout] = {}
_checkouts_guard = threading.Lock()


def get_checkout(user: CurrentUser) -> Checkout:
    with _checkouts_guard:
        co = _checkouts.get(user.id)
        if co is None:
            co = _checkouts[user.id] = Checkout()
        return co


def reset_checkouts() -> None:
    with _checkouts_guard:
        _checkouts.clear()


class Ctx:
    def __init__(self, db: Session, user: Optional[CurrentUser]):
        self.user = require_user(user)
        self.store_id = require_store(user)
        self.store = DataStore(db)
        self.catalog = CatalogLookup(self.store, self.store_id)
        self.checkout = get_checkout(self.user)


def ctx(db: Session = Depends(get_db), user: Optional[CurrentUser] = Depends(current_user)) -> Ctx:
    return Ctx(db, user)


# ====== Schemas ======
class AddItemIn(BaseModel):
    product_id: Optional[int] = None
    barcode: Optional[str] = None

    @model_validator(mode="after")
    def _one_ref(self):
        if self.product_id is None and not self.barcode:
            raise ValueError("product_id or barcode required")
        return self


class QuantityIn(BaseModel):
    quantity: int


class DiscountIn(BaseModel):
    discount: Decimal = Decimal("0")


class SaleKindIn(BaseModel):
    sale_kind: str


class TenderIn(BaseModel):
    method: str
    amount: Decimal


class FinalizeIn(BaseModel):
    cash_received: Optional[Decimal] = None


class InstallmentsIn(BaseModel):
    count: int = Field(..., ge=1)
    first_due_date: date


# ====== Carrito ======
@router.get("/cart")
def get_cart(c: Ctx = Depends(ctx)):
    return c.checkout.as_dict()


@router.post("/cart/items")
def add_item(payload: AddItemIn, c: Ctx = Depends(ctx)):
    if payload.product_id is not None:
        product = c.catalog.get(payload.product_id)
    else:
        product = c.catalog.find_by_barcode(payload.barcode)
    c.checkout.add_product(product)
    return c.checkout.as_dict()


@router.put("/cart/items/{product_id}")
def set_item_quantity(product_id: int, payload: QuantityIn, c: Ctx = Depends(ctx)):
    c.checkout.set_quantity(product_id, payload.quantity)
    return c.checkout.as_dict()


@router.post("/cart/items/{product_id}/increment")
def increment_item(product_id: int, c: Ctx = Depends(ctx)):
    c.checkout.increment(product_id)
    return c.checkout.as_dict()


@router.post("/cart/items/{product_id}/decrement")
def decrement_item(product_id: int, c: Ctx = Depends(ctx)):
    c.checkout.decrement(product_id)
    return c.checkout.as_dict()


@router.delete("/cart/items/{product_id}")
def remove_item(product_id: int, c: Ctx = Depends(ctx)):
    c.checkout.remove(product_id)
    return c.checkout.as_dict()


@router.put("/cart/discount")
def set_discount(payload: DiscountIn, c: Ctx = Depends(ctx)):
    c.checkout.set_discount(payload.discount)
    return c.checkout.as_dict()


@router.put("/cart/sale-kind")
def set_sale_kind(payload: SaleKindIn, c: Ctx = Depends(ctx)):
    c.checkout.set_sale_kind(payload.sale_kind)
    return c.checkout.as_dict()


@router.delete("/cart")
def clear_cart(c: Ctx = Depends(ctx)):
    c.checkout.clear()
    return c.checkout.as_dict()


# ====== Pagos / cierre ======
@router.post("/checkout/begin")
def begin_checkout(c: Ctx = Depends(ctx)):
    c.checkout.begin()
    return c.checkout.as_dict()


@router.post("/checkout/tenders")
def add_tender(payload: TenderIn, c: Ctx = Depends(ctx)):
    c.checkout.add_tender(payload.method, payload.amount)
    return c.checkout.as_dict()


@router.delete("/checkout/tenders/{index}")
def remove_tender(index: int, c: Ctx = Depends(ctx)):
    c.checkout.remove_tender(index)
    return c.checkout.as_dict()


@router.post("/checkout/finalize")
def finalize_checkout(
    payload: Optional[FinalizeIn] = None,
    c: Ctx = Depends(ctx),
    idempotency_key: Optional[str] = Header(default=None),
):
    if idempotency_key:
        if c.checkout.state == CheckoutState.SETTLING:
            raise CheckoutBusy("Venda em finalização")
        c.checkout.idempotency_key = idempotency_key
    cash_received = payload.cash_received if payload else None
    result = c.checkout.finalize(c.store, c.user, cash_received=cash_received, catalog=c.catalog)
    return {"sale": result.as_dict(), "receipt": render(result.receipt)}


@router.post("/sales/{sale_id}/installments")
def configure_installments(sale_id: int, payload: InstallmentsIn, c: Ctx = Depends(ctx)):
    rows = SettlementService(c.store, c.store_id, c.user.id).configure_installments(
        sale_id, payload.count, payload.first_due_date
    )
    return {
        "sale_id": sale_id,
        "installments": [
            {
                "installment_number": r["installment_number"],
                "amount": str(r["amount"]),
                "due_date": r["due_date"].isoformat(),
                "status": r["status"],
            }
            for r in rows
        ],
    }


@router.get("/sales/{sale_id}/receipt", response_class=PlainTextResponse)
def sale_receipt(sale_id: int, c: Ctx = Depends(ctx)):
    return render(snapshot_from_sale(c.store, c.store_id, sale_id))


# ====== Ventas en espera ======
@router.post("/pending")
def suspend_sale(c: Ctx = Depends(ctx)):
    if c.checkout.state == CheckoutState.SETTLING:
        raise CheckoutBusy("Venda em finalização")
    pending_id = SuspendedSaleStore(c.store, c.store_id).suspend(c.checkout.cart.snapshot())
    c.checkout.clear()
    return {"id": pending_id}


@router.get("/pending")
def list_pending(c: Ctx = Depends(ctx)):
    rows = SuspendedSaleStore(c.store, c.store_id).list()
    return {"count": len(rows), "pending": [{**r, "created_at": r["created_at"].isoformat()} for r in rows]}


@router.post("/pending/{pending_id}/resume")
def resume_pending(pending_id: int, c: Ctx = Depends(ctx)):
    if c.checkout.state == CheckoutState.SETTLING:
        raise CheckoutBusy("Venda em finalização")
    # el catálogo se lee antes de consumir la venta en espera
    products = c.catalog.reload()
    lines = SuspendedSaleStore(c.store, c.store_id).resume(pending_id)
    adjustments = c.checkout.resume(lines, products)
    return {"cart": c.checkout.as_dict(), "adjustments": adjustments}
