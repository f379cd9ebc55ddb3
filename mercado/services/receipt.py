"""
Cupom no fiscal en texto de ancho fijo (impresora térmica de 80mm ≈ 40 columnas).

`render()` es pura: recibe un ReceiptSnapshot y devuelve el documento. La impresión
queda del lado del cliente.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from ..core.config import settings
from ..core.errors import NotFound
from ..core.money import ZERO, fmt, money
from .datastore import DataStore
from .tenders import CASH, MULTIPLE

METHOD_LABELS = {
    "cash": "Dinheiro",
    "credit": "Cartão de Crédito",
    "debit": "Cartão de Débito",
    "pix": "PIX",
    MULTIPLE: "Múltiplo",
}


def method_label(method: str) -> str:
    return METHOD_LABELS.get(method, method)


@dataclass
class StoreInfo:
    name: Optional[str] = None
    address: Optional[str] = None
    cnpj: Optional[str] = None


@dataclass
class ReceiptLine:
    name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


@dataclass
class ReceiptInstallment:
    number: int
    due_date: date
    amount: Decimal


@dataclass
class ReceiptSnapshot:
    sale_number: int
    created_at: datetime
    lines: List[ReceiptLine]
    subtotal: Decimal
    discount: Decimal
    final_amount: Decimal
    payment_method: str
    tenders: List[dict] = field(default_factory=list)  # [{"method", "amount"}]
    store: StoreInfo = field(default_factory=StoreInfo)
    cash_received: Optional[Decimal] = None
    change: Decimal = ZERO
    installments: List[ReceiptInstallment] = field(default_factory=list)


def _center(text: str, width: int) -> str:
    return text[:width].center(width).rstrip()


def _pair(left: str, right: str, width: int) -> str:
    room = width - len(right) - 1
    if room < 1:
        return f"{left} {right}"
    return f"{left[:room]:<{room}} {right}"


def _amount(v, negative: bool = False) -> str:
    sign = "-" if negative else ""
    return sign + fmt(v, settings.currency_symbol)


def render(snapshot: ReceiptSnapshot, width: Optional[int] = None) -> str:
    width = width or settings.receipt_width
    rule = "-" * width
    out: List[str] = []

    store = snapshot.store or StoreInfo()
    out.append(_center("CUPOM NÃO FISCAL", width))
    out.append(_center(store.name or settings.store_fallback_name, width))
    if store.address:
        out.append(_center(store.address, width))
    if store.cnpj:
        out.append(_center(f"CNPJ: {store.cnpj}", width))
    out.append(rule)
    out.append(_center(f"Venda #{snapshot.sale_number}", width))
    out.append(_center(snapshot.created_at.strftime("%d/%m/%Y %H:%M"), width))
    out.append(rule)

    for line in snapshot.lines:
        out.append(line.name[:width])
        out.append(_pair(f"{line.quantity} x {_amount(line.unit_price)}", _amount(line.subtotal), width))
    out.append(rule)

    out.append(_pair("Subtotal:", _amount(snapshot.subtotal), width))
    if money(snapshot.discount) > 0:
        out.append(_pair("Desconto:", _amount(snapshot.discount, negative=True), width))
    out.append(_pair("TOTAL:", _amount(snapshot.final_amount), width))
    out.append(rule)

    if snapshot.payment_method == MULTIPLE and snapshot.tenders:
        out.append(_center("Formas de Pagamento:", width))
        for t in snapshot.tenders:
            out.append(_pair(f"{method_label(t['method'])}:", _amount(t["amount"]), width))
    else:
        out.append(_pair("Pagamento:", method_label(snapshot.payment_method), width))

    has_cash = snapshot.payment_method == CASH or any(t["method"] == CASH for t in snapshot.tenders)
    if has_cash and snapshot.cash_received is not None:
        out.append(_pair("Valor Recebido:", _amount(snapshot.cash_received), width))
        out.append(_pair("Troco:", _amount(snapshot.change), width))

    if snapshot.installments:
        out.append(rule)
        out.append(_center("Parcelamento:", width))
        total = len(snapshot.installments)
        for inst in snapshot.installments:
            out.append(
                _pair(
                    f"{inst.number}/{total} {inst.due_date.strftime('%d/%m/%Y')}",
                    _amount(inst.amount),
                    width,
                )
            )

    out.append(rule)
    out.append(_center("Obrigado pela preferência!", width))
    return "\n".join(out) + "\n"


def snapshot_from_sale(store: DataStore, store_id: int, sale_id: int) -> ReceiptSnapshot:
    """Reconstruye el snapshot desde las filas persistidas (reimpresión)."""
    sales = store.get("sales", id=sale_id, store_id=store_id)
    if not sales:
        raise NotFound("Venda não encontrada", sale_id=sale_id)
    sale = sales[0]
    items = store.get("sale_items", order_by="id", sale_id=sale.id)
    tenders = []
    if sale.payment_method == MULTIPLE:
        tenders = [
            {"method": p.payment_method, "amount": money(p.amount)}
            for p in store.get("sale_payments", order_by="id", sale_id=sale.id)
        ]
    installments = [
        ReceiptInstallment(number=i.installment_number, due_date=i.due_date, amount=money(i.amount))
        for i in store.get("installments", order_by="installment_number", sale_id=sale.id)
    ]
    shop = store.get("stores", id=store_id)
    info = StoreInfo()
    if shop:
        s = shop[0]
        address = " - ".join(x for x in (s.address, s.city, s.state) if x)
        info = StoreInfo(name=s.name, address=address or None, cnpj=s.cnpj)
    return ReceiptSnapshot(
        sale_number=sale.sale_number,
        created_at=sale.created_at,
        lines=[
            ReceiptLine(
                name=i.product_name or "Produto",
                quantity=i.quantity,
                unit_price=money(i.unit_price),
                subtotal=money(i.subtotal),
            )
            for i in items
        ],
        subtotal=money(sale.total_amount),
        discount=money(sale.discount or 0),
        final_amount=money(sale.final_amount),
        payment_method=sale.payment_method,
        tenders=tenders,
        store=info,
        installments=installments,
    )
