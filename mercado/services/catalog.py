import logging
import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import settings
from ..core.errors import NotFound, PersistenceFailure
from ..core.money import money
from .datastore import DataStore

logger = logging.getLogger(__name__)


class ProductRecord(BaseModel):
    """Fila de `products` validada en la frontera, antes de entrar al carrito."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    price: Decimal = Field(ge=0)
    stock_quantity: int = Field(ge=0)
    unit: Optional[str] = "un"
    barcode: Optional[str] = None
    active: bool = True

    @field_validator("price", mode="before")
    @classmethod
    def _price_to_money(cls, v):
        return money(v)

    @field_validator("stock_quantity", mode="before")
    @classmethod
    def _stock_default(cls, v):
        return 0 if v is None else v


class CatalogLookup:
    def __init__(self, store: DataStore, store_id: int):
        self.store = store
        self.store_id = store_id

    def find_by_barcode(self, code: str) -> ProductRecord:
        code = (code or "").strip()
        if not code:
            raise NotFound("Produto não encontrado", barcode=code)
        try:
            rows = self.store.get("products", store_id=self.store_id, barcode=code, active=True)
        except PersistenceFailure as e:
            logger.warning("Lookup por código %s falló: %s", code, e)
            rows = []
        if not rows:
            raise NotFound("Produto não encontrado", barcode=code)
        return ProductRecord.model_validate(rows[0])

    def get(self, product_id: int) -> ProductRecord:
        rows = self.store.get("products", id=product_id, store_id=self.store_id)
        if not rows or not rows[0].active:
            raise NotFound("Produto não encontrado", product_id=product_id)
        return ProductRecord.model_validate(rows[0])

    def search(self, text: str, limit: Optional[int] = None) -> List[ProductRecord]:
        text = (text or "").strip()
        if len(text) < settings.search_min_chars:
            return []
        limit = min(limit or settings.search_limit, settings.search_limit)
        try:
            rows = self.store.search_products(self.store_id, text, limit)
        except PersistenceFailure as e:
            logger.warning("Búsqueda '%s' degradada a vacío: %s", text, e)
            return []
        return [ProductRecord.model_validate(r) for r in rows]

    def reload(self) -> Dict[int, ProductRecord]:
        rows = self.store.get("products", order_by="name", store_id=self.store_id, active=True)
        return {r.id: ProductRecord.model_validate(r) for r in rows}


class SearchDebouncer:
    """
    Evita una consulta por tecla: `keystroke()` registra el texto y `poll()` sólo
    dispara la búsqueda cuando pasó la ventana de inactividad y el texto cambió.
    """

    def __init__(
        self,
        search: Callable[[str], List[ProductRecord]],
        wait_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._search = search
        self._wait = (settings.search_debounce_ms if wait_ms is None else wait_ms) / 1000.0
        self._clock = clock
        self._pending: Optional[str] = None
        self._last_key_at = 0.0
        self._last_issued: Optional[str] = None
        self.results: List[ProductRecord] = []

    def keystroke(self, text: str) -> None:
        self._pending = text
        self._last_key_at = self._clock()

    def poll(self) -> Optional[List[ProductRecord]]:
        if self._pending is None:
            return None
        if self._clock() - self._last_key_at < self._wait:
            return None
        text, self._pending = self._pending, None
        if text == self._last_issued:
            return None
        self._last_issued = text
        self.results = self._search(text)
        return self.results
