"""
Cierre de venta (PDV).

Máquina de estados por operador:

    IDLE -> AWAITING_TENDER -> SETTLING -> COMPLETED
                                   \\-> FAILED (reintentable, misma idempotency key)

La escritura (venta, ítems, pagos, stock) corre en una sola transacción; si algo
falla no queda nada a medias. La key de idempotencia evita duplicar la venta si el
cliente reintenta una escritura que sí llegó a confirmarse.
"""
import calendar
import logging
import threading
import time
import uuid
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..core.config import settings
from ..core.errors import (
    CheckoutBusy,
    CheckoutError,
    EmptyCart,
    InvalidInstallmentPlan,
    NotFound,
    PersistenceFailure,
    StockExceeded,
)
from ..core.identity import CurrentUser, require_store, require_user
from ..core.money import ZERO, money, money_floor
from .cart import Cart, CartLine
from .catalog import CatalogLookup, ProductRecord
from .datastore import DataStore
from .receipt import ReceiptSnapshot, snapshot_from_sale
from .tenders import TenderSplitter

logger = logging.getLogger(__name__)

SALE_KIND_CASH = "cash"
SALE_KIND_INSTALLMENT = "installment"
SALE_KINDS = (SALE_KIND_CASH, SALE_KIND_INSTALLMENT)


class CheckoutState(str, Enum):
    IDLE = "idle"
    AWAITING_TENDER = "awaiting_tender"
    SETTLING = "settling"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------- parcelas ----------
def add_months(d: date, months: int) -> date:
    y, m = divmod(d.month - 1 + months, 12)
    year, month = d.year + y, m + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def split_installments(final_amount, count: int, first_due_date: date) -> List[dict]:
    """floor(final/N, 2) para las primeras N-1; la última absorbe el resto."""
    final_amount = money(final_amount)
    if count < 1 or count > settings.max_installments:
        raise InvalidInstallmentPlan(
            f"Número de parcelas deve estar entre 1 e {settings.max_installments}", count=count
        )
    if final_amount <= 0:
        raise InvalidInstallmentPlan("Venda sem valor a parcelar", final_amount=str(final_amount))
    base = money_floor(final_amount / count)
    last = money(final_amount - base * (count - 1))
    return [
        {
            "installment_number": i + 1,
            "amount": base if i < count - 1 else last,
            "due_date": add_months(first_due_date, i),
            "status": "pending",
        }
        for i in range(count)
    ]


# ---------- persistencia ----------
class SettlementService:
    def __init__(
        self,
        store: DataStore,
        store_id: int,
        user_id: int,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.store_id = store_id
        self.user_id = user_id
        self.timeout = settings.settle_timeout_seconds if timeout is None else timeout
        self._clock = clock
        self._started = 0.0

    def _check_deadline(self, step: str) -> None:
        if self._clock() - self._started > self.timeout:
            raise PersistenceFailure("Tempo esgotado ao gravar a venda", step=step)

    def persist(self, cart: Cart, tenders: TenderSplitter, sale_kind: str, idempotency_key: Optional[str] = None):
        self._started = self._clock()
        with self.store.transaction():
            if idempotency_key:
                dup = self.store.get("sales", idempotency_key=idempotency_key, store_id=self.store_id)
                if dup:
                    logger.info("Venta %s ya registrada con key %s; replay", dup[0].id, idempotency_key)
                    return dup[0]

            # a) cabecera
            self._check_deadline("sale")
            number = self.store.next_sale_number(self.store_id)
            sale = self.store.insert(
                "sales",
                [
                    {
                        "store_id": self.store_id,
                        "user_id": self.user_id,
                        "sale_number": number,
                        "total_amount": cart.subtotal(),
                        "discount": cart.effective_discount(),
                        "final_amount": cart.total(),
                        "payment_method": tenders.payment_label(),
                        "sale_type": sale_kind,
                        "status": "pending" if sale_kind == SALE_KIND_INSTALLMENT else "completed",
                        "idempotency_key": idempotency_key,
                    }
                ],
            )[0]

            # b) ítems
            self._check_deadline("sale_items")
            self.store.insert(
                "sale_items",
                [
                    {
                        "sale_id": sale.id,
                        "product_id": l.product_id,
                        "product_name": l.name,
                        "quantity": l.quantity,
                        "unit_price": l.unit_price,
                        "subtotal": l.subtotal,
                    }
                    for l in cart.lines
                ],
            )

            # c) pagos, sólo si hubo más de uno
            if len(tenders.tenders) > 1:
                self._check_deadline("sale_payments")
                self.store.insert(
                    "sale_payments",
                    [{"sale_id": sale.id, "payment_method": t.method, "amount": t.amount} for t in tenders.tenders],
                )

            # d) stock (decremento condicional por producto)
            self._check_deadline("stock")
            per_product: Dict[int, int] = OrderedDict()
            for l in cart.lines:
                per_product[l.product_id] = per_product.get(l.product_id, 0) + l.quantity
            for product_id, qty in per_product.items():
                if not self.store.decrement_stock(self.store_id, product_id, qty):
                    raise StockExceeded(
                        "Estoque insuficiente no momento da venda",
                        product_id=product_id,
                        quantity=qty,
                    )
            self.store.insert(
                "stock_movements",
                [
                    {
                        "store_id": self.store_id,
                        "product_id": product_id,
                        "user_id": self.user_id,
                        "quantity": -qty,
                        "type": "exit",
                        "reason": f"Venda #{number}",
                    }
                    for product_id, qty in per_product.items()
                ],
            )
            self._check_deadline("commit")

        logger.info(
            "Venta #%s registrada (store=%s, final=%s, pago=%s, tipo=%s)",
            number, self.store_id, sale.final_amount, sale.payment_method, sale_kind,
        )
        return sale

    def configure_installments(self, sale_id: int, count: int, first_due_date: date) -> List[dict]:
        with self.store.transaction():
            sales = self.store.get("sales", id=sale_id, store_id=self.store_id)
            if not sales:
                raise NotFound("Venda não encontrada", sale_id=sale_id)
            sale = sales[0]
            if sale.sale_type != SALE_KIND_INSTALLMENT:
                raise InvalidInstallmentPlan("Venda não é parcelada", sale_id=sale_id)
            if self.store.get("installments", sale_id=sale.id):
                raise InvalidInstallmentPlan("Venda já possui parcelas", sale_id=sale_id)
            rows = split_installments(sale.final_amount, count, first_due_date)
            self.store.insert("installments", [{"sale_id": sale.id, **r} for r in rows])
        logger.info("Venta %s parcelada en %d", sale_id, count)
        return rows


# ---------- sesión de caja ----------
@dataclass
class SettlementResult:
    sale_id: int
    sale_number: int
    final_amount: Decimal
    payment_method: str
    change: Decimal
    needs_installments: bool
    receipt: ReceiptSnapshot

    def as_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "sale_number": self.sale_number,
            "final_amount": str(self.final_amount),
            "payment_method": self.payment_method,
            "change": str(self.change),
            "needs_installments": self.needs_installments,
        }


class Checkout:
    """
    Carrito + pagos de un operador. Una sola venta en curso a la vez.

    Toda mutación y el cierre comparten `_lock`: mientras `finalize()` valida y
    escribe, cualquier edición concurrente recibe CheckoutBusy en vez de cambiar
    el carrito ya validado.
    """

    def __init__(self):
        self.cart = Cart()
        self.tenders = TenderSplitter()
        self.sale_kind = SALE_KIND_CASH
        self.state = CheckoutState.IDLE
        self.products: Dict[int, ProductRecord] = {}
        self.idempotency_key: Optional[str] = None
        self.last_error: Optional[CheckoutError] = None
        self._lock = threading.Lock()

    @contextmanager
    def _editing(self, touch: bool = True):
        if not self._lock.acquire(blocking=False):
            raise CheckoutBusy("Venda em finalização")
        try:
            if self.state == CheckoutState.SETTLING:
                raise CheckoutBusy("Venda em finalização")
            if touch:
                self._touch()
            yield
        finally:
            self._lock.release()

    # ---------- carrito ----------
    def _touch(self) -> None:
        # editar el carrito después de un cierre abre una venta nueva
        if self.state in (CheckoutState.COMPLETED, CheckoutState.FAILED):
            self.state = CheckoutState.IDLE
            self.idempotency_key = None
            self.last_error = None

    def add_product(self, product: ProductRecord) -> CartLine:
        with self._editing():
            line = self.cart.add_or_increment(product)
            self.products[product.id] = product
            return line

    def set_quantity(self, product_id: int, n: int) -> Optional[CartLine]:
        with self._editing():
            return self.cart.set_quantity(product_id, n)

    def increment(self, product_id: int) -> Optional[CartLine]:
        with self._editing():
            return self.cart.increment(product_id)

    def decrement(self, product_id: int) -> Optional[CartLine]:
        with self._editing():
            return self.cart.decrement(product_id)

    def remove(self, product_id: int) -> None:
        with self._editing():
            self.cart.remove(product_id)

    def set_discount(self, amount) -> None:
        with self._editing():
            self.cart.set_discount(amount)

    def set_sale_kind(self, kind: str) -> None:
        if kind not in SALE_KINDS:
            raise InvalidInstallmentPlan(f"Tipo de venda inválido: {kind}", sale_kind=kind)
        with self._editing():
            self.sale_kind = kind

    def clear(self) -> None:
        with self._editing():
            self._reset()

    def _reset(self) -> None:
        self.cart.clear()
        self.tenders.clear()
        self.sale_kind = SALE_KIND_CASH

    # ---------- pagos ----------
    def _begin(self) -> None:
        if self.cart.is_empty():
            raise EmptyCart("Adicione produtos ao carrinho")
        if self.state != CheckoutState.AWAITING_TENDER:
            # tras un FAILED se conserva la key: el reintento no duplica la venta
            self.state = CheckoutState.AWAITING_TENDER
            self.idempotency_key = self.idempotency_key or uuid.uuid4().hex
        self.tenders.total = self.cart.total()

    def begin(self) -> None:
        with self._editing(touch=False):
            self._begin()

    def add_tender(self, method: str, amount):
        with self._editing(touch=False):
            if self.state != CheckoutState.AWAITING_TENDER:
                self._begin()
            return self.tenders.add_tender(method, amount)

    def remove_tender(self, index: int):
        with self._editing(touch=False):
            return self.tenders.remove_tender(index)

    def remaining_balance(self) -> Decimal:
        self.tenders.total = self.cart.total()
        return self.tenders.remaining_balance()

    def can_settle(self) -> bool:
        self.tenders.total = self.cart.total()
        return not self.cart.is_empty() and self.tenders.can_settle()

    # ---------- cierre ----------
    def finalize(
        self,
        store: DataStore,
        user: Optional[CurrentUser],
        cash_received=None,
        catalog: Optional[CatalogLookup] = None,
        timeout: Optional[float] = None,
    ) -> SettlementResult:
        if not self._lock.acquire(blocking=False):
            raise CheckoutBusy("Venda em finalização")
        try:
            user = require_user(user)
            store_id = require_store(user)
            self._begin()
            self.tenders.ensure_balanced()
            change = self.tenders.change_for(cash_received)
            has_cash = self.tenders.cash_tendered() > ZERO

            self.state = CheckoutState.SETTLING
            try:
                sale = SettlementService(store, store_id, user.id, timeout=timeout).persist(
                    self.cart, self.tenders, self.sale_kind, self.idempotency_key
                )
            except Exception as e:
                self.state = CheckoutState.FAILED
                self.last_error = e if isinstance(e, CheckoutError) else PersistenceFailure(str(e))
                logger.warning("Cierre fallido (key=%s): %s", self.idempotency_key, e)
                if isinstance(e, StockExceeded) and catalog is not None:
                    # el operador ve el stock real antes de reintentar
                    self.products = catalog.reload()
                    self.cart.refresh_stock(self.products)
                raise

            # la venta ya está confirmada: la caja queda libre aunque falle el cupom
            self.state = CheckoutState.COMPLETED
            self.last_error = None
            self._reset()

            try:
                receipt = snapshot_from_sale(store, store_id, sale.id)
            except CheckoutError as e:
                logger.error("Venta %s registrada pero sin cupom: %s", sale.id, e)
                raise PersistenceFailure(
                    "Venda registrada; reimprima o cupom", sale_id=sale.id, sale_number=sale.sale_number
                ) from e
            if cash_received is not None and has_cash:
                receipt.cash_received = money(cash_received)
            receipt.change = change

            result = SettlementResult(
                sale_id=sale.id,
                sale_number=sale.sale_number,
                final_amount=money(sale.final_amount),
                payment_method=sale.payment_method,
                change=change,
                needs_installments=sale.sale_type == SALE_KIND_INSTALLMENT,
                receipt=receipt,
            )
            if catalog is not None:
                self.products = catalog.reload()
            return result
        finally:
            self._lock.release()

    # ---------- ventas en espera ----------
    def resume(self, lines: List[dict], products: Dict[int, ProductRecord]) -> List[dict]:
        """Carga un carrito suspendido. Ajusta cantidades al stock actual; devuelve los ajustes."""
        with self._editing():
            self._reset()
            self.products = products
            adjustments: List[dict] = []
            rebuilt: List[CartLine] = []
            for item in lines:
                pid = int(item["product_id"])
                wanted = int(item["quantity"])
                p = products.get(pid)
                available = p.stock_quantity if p is not None else 0
                qty = min(wanted, available)
                if qty != wanted:
                    adjustments.append({"product_id": pid, "requested": wanted, "quantity": qty})
                if qty <= 0:
                    continue
                rebuilt.append(
                    CartLine(
                        product_id=pid,
                        name=item.get("name") or (p.name if p else "Produto"),
                        unit_price=money(item["price"]),
                        quantity=qty,
                        stock_snapshot=available,
                    )
                )
            self.cart.load(rebuilt)
            return adjustments

    def as_dict(self) -> dict:
        total = self.cart.total()
        self.tenders.total = total
        return {
            "state": self.state.value,
            "sale_kind": self.sale_kind,
            "lines": [l.as_dict() for l in self.cart.lines],
            "subtotal": str(self.cart.subtotal()),
            "discount": str(self.cart.discount),
            "discount_exceeds_subtotal": self.cart.discount_exceeds_subtotal,
            "total": str(total),
            "tenders": [t.as_dict() for t in self.tenders.tenders],
            "remaining": str(self.tenders.remaining_balance()),
            "can_settle": self.can_settle(),
        }
