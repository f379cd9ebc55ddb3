import json
import logging
from typing import List

from ..core.errors import EmptyCart, NotFound
from .datastore import DataStore

logger = logging.getLogger(__name__)


class SuspendedSaleStore:
    """Ventas en espera (pending_sales). Resume es de un solo uso."""

    def __init__(self, store: DataStore, store_id: int):
        self.store = store
        self.store_id = store_id

    def suspend(self, lines: List[dict]) -> int:
        if not lines:
            raise EmptyCart("Carrinho vazio")
        payload = [
            {
                "product_id": int(l["product_id"]),
                "name": l.get("name"),
                "quantity": int(l["quantity"]),
                "price": str(l["price"]),
            }
            for l in lines
        ]
        row = self.store.insert(
            "pending_sales",
            [{"store_id": self.store_id, "cart": json.dumps(payload, ensure_ascii=False)}],
        )[0]
        logger.info("Venta en espera %s guardada (%d líneas)", row.id, len(payload))
        return row.id

    def list(self) -> List[dict]:
        rows = self.store.get("pending_sales", order_by="created_at", store_id=self.store_id)
        rows = sorted(rows, key=lambda r: (r.created_at, r.id))
        return [{"id": r.id, "cart": json.loads(r.cart), "created_at": r.created_at} for r in rows]

    def resume(self, pending_id: int) -> List[dict]:
        try:
            row = self.store.delete_returning("pending_sales", pending_id, store_id=self.store_id)
        except NotFound:
            raise NotFound("Nada para retomar", pending_id=pending_id)
        logger.info("Venta en espera %s retomada", pending_id)
        return json.loads(row["cart"])
