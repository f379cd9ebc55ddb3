from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from ..core.config import settings
from ..core.errors import InvalidTender, TenderImbalance
from ..core.money import ZERO, money

MULTIPLE = "multiple"
CASH = "cash"


@dataclass(frozen=True)
class Tender:
    method: str
    amount: Decimal

    def as_dict(self) -> dict:
        return {"method": self.method, "amount": str(self.amount)}


class TenderSplitter:
    """Acumula formas de pago contra el total requerido de la venta."""

    def __init__(self, total=ZERO, methods: Optional[List[str]] = None, tolerance: Optional[Decimal] = None):
        self.total = money(total)
        self.methods = methods or settings.payment_methods
        self.tolerance = settings.balance_tolerance if tolerance is None else money(tolerance)
        self.tenders: List[Tender] = []

    def add_tender(self, method: str, amount) -> Tender:
        method = (method or "").strip().lower()
        if method not in self.methods:
            raise InvalidTender(f"Forma de pagamento inválida: {method}", method=method)
        amount = money(amount)
        if amount <= 0:
            raise InvalidTender("Valor do pagamento deve ser positivo", amount=str(amount))
        tender = Tender(method=method, amount=amount)
        self.tenders.append(tender)
        return tender

    def remove_tender(self, index: int) -> Tender:
        if index < 0 or index >= len(self.tenders):
            raise InvalidTender("Pagamento inexistente", index=index)
        return self.tenders.pop(index)

    def clear(self) -> None:
        self.tenders = []

    def paid(self) -> Decimal:
        return money(sum((t.amount for t in self.tenders), ZERO))

    def remaining_balance(self) -> Decimal:
        return money(self.total - self.paid())

    def can_settle(self) -> bool:
        return bool(self.tenders) and abs(self.remaining_balance()) <= self.tolerance

    def ensure_balanced(self) -> None:
        if not self.can_settle():
            raise TenderImbalance(
                "Pagamentos não fecham com o total da venda",
                total=str(self.total),
                paid=str(self.paid()),
                remaining=str(self.remaining_balance()),
            )

    def payment_label(self) -> str:
        if len(self.tenders) == 1:
            return self.tenders[0].method
        return MULTIPLE

    def cash_tendered(self) -> Decimal:
        return money(sum((t.amount for t in self.tenders if t.method == CASH), ZERO))

    def change_for(self, received=None) -> Decimal:
        """Troco: efectivo recibido menos efectivo cobrado. Sin recibido => 0."""
        if received is None:
            return ZERO
        received = money(received)
        cash = self.cash_tendered()
        if cash == ZERO:
            return ZERO
        if received < cash:
            raise TenderImbalance(
                "Valor recebido menor que o valor em dinheiro",
                received=str(received),
                cash=str(cash),
            )
        return money(received - cash)
