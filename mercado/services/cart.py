from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..core.errors import InvalidDiscount, NotFound, StockExceeded
from ..core.money import ZERO, money
from .catalog import ProductRecord


@dataclass
class CartLine:
    product_id: int
    name: str
    unit_price: Decimal  # copiado al agregar, no se vuelve a leer
    quantity: int
    stock_snapshot: int

    @property
    def subtotal(self) -> Decimal:
        return money(self.unit_price * self.quantity)

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "subtotal": str(self.subtotal),
            "stock": self.stock_snapshot,
        }


@dataclass
class Cart:
    lines: List[CartLine] = field(default_factory=list)
    discount: Decimal = ZERO

    def _find(self, product_id: int) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def line(self, product_id: int) -> CartLine:
        found = self._find(product_id)
        if found is None:
            raise NotFound("Produto não está no carrinho", product_id=product_id)
        return found

    def is_empty(self) -> bool:
        return not self.lines

    def add_or_increment(self, product: ProductRecord) -> CartLine:
        existing = self._find(product.id)
        if existing is not None:
            if existing.quantity + 1 > product.stock_quantity:
                raise StockExceeded(
                    "Quantidade excede o estoque disponível",
                    product_id=product.id,
                    stock=product.stock_quantity,
                )
            existing.quantity += 1
            existing.stock_snapshot = product.stock_quantity
            return existing

        if product.stock_quantity < 1:
            raise StockExceeded("Produto sem estoque", product_id=product.id, stock=product.stock_quantity)
        line = CartLine(
            product_id=product.id,
            name=product.name,
            unit_price=money(product.price),
            quantity=1,
            stock_snapshot=product.stock_quantity,
        )
        self.lines.append(line)
        return line

    def set_quantity(self, product_id: int, n: int) -> Optional[CartLine]:
        line = self.line(product_id)
        if n <= 0:
            self.remove(product_id)
            return None
        if n > line.stock_snapshot:
            raise StockExceeded(
                "Quantidade excede o estoque disponível",
                product_id=product_id,
                stock=line.stock_snapshot,
            )
        line.quantity = n
        return line

    def increment(self, product_id: int) -> Optional[CartLine]:
        return self.set_quantity(product_id, self.line(product_id).quantity + 1)

    def decrement(self, product_id: int) -> Optional[CartLine]:
        return self.set_quantity(product_id, self.line(product_id).quantity - 1)

    def remove(self, product_id: int) -> None:
        self.lines = [l for l in self.lines if l.product_id != product_id]

    def clear(self) -> None:
        self.lines = []
        self.discount = ZERO

    def set_discount(self, amount) -> None:
        amount = money(amount or 0)
        if amount < 0:
            raise InvalidDiscount("Desconto não pode ser negativo", discount=str(amount))
        self.discount = amount

    def refresh_stock(self, products: Dict[int, ProductRecord]) -> None:
        for line in self.lines:
            p = products.get(line.product_id)
            if p is not None:
                line.stock_snapshot = p.stock_quantity

    # ---------- totales (siempre recalculados) ----------
    def subtotal(self) -> Decimal:
        return money(sum((l.subtotal for l in self.lines), ZERO))

    @property
    def discount_exceeds_subtotal(self) -> bool:
        return self.discount > self.subtotal()

    def effective_discount(self) -> Decimal:
        return min(self.discount, self.subtotal())

    def total(self) -> Decimal:
        return max(ZERO, money(self.subtotal() - self.discount))

    def snapshot(self) -> List[dict]:
        return [
            {"product_id": l.product_id, "name": l.name, "quantity": l.quantity, "price": str(l.unit_price)}
            for l in self.lines
        ]

    def load(self, lines: Iterable[CartLine]) -> None:
        self.lines = list(lines)
