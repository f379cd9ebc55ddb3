"""
Acceso a datos del PDV.

Contrato estrecho sobre la sesión SQLAlchemy: get / insert / update / delete_returning,
más las dos operaciones que necesitan ser atómicas en SQL (decremento condicional de
stock y numeración de ventas). Todo error de SQLAlchemy sale como PersistenceFailure.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import NotFound, PersistenceFailure
from ..models.product import Product
from ..models.sale import Installment, PendingSale, Sale, SaleItem, SalePayment
from ..models.stock import StockMovement
from ..models.store import Profile, Store

logger = logging.getLogger(__name__)

TABLES = {
    "products": Product,
    "sales": Sale,
    "sale_items": SaleItem,
    "sale_payments": SalePayment,
    "installments": Installment,
    "pending_sales": PendingSale,
    "stock_movements": StockMovement,
    "stores": Store,
    "profiles": Profile,
}


def _model(table: str):
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Tabla desconocida: {table}")


def row_to_dict(row) -> Dict[str, Any]:
    if row is None:
        return {}
    if hasattr(row, "_mapping"):
        return dict(row._mapping)
    return {c.name: getattr(row, c.name) for c in row.__table__.columns}


class DataStore:
    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    # ---------- unidad de trabajo ----------
    @contextmanager
    def transaction(self):
        """Agrupa escrituras; commit al salir, rollback ante cualquier error."""
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Transacción revertida: %s", e)
            raise PersistenceFailure(f"Erro ao gravar: {e.__class__.__name__}") from e
        except Exception:
            self.db.rollback()
            raise
        finally:
            self._depth -= 1

    def _commit_if_autonomous(self):
        if self._depth == 0:
            self.db.commit()

    @contextmanager
    def _wrap(self, op: str):
        try:
            yield
        except SQLAlchemyError as e:
            if self._depth == 0:
                self.db.rollback()
            logger.warning("Falla de persistencia en %s: %s", op, e)
            raise PersistenceFailure(f"Erro ao gravar ({op})", op=op) from e

    # ---------- contrato genérico ----------
    def get(self, table: str, order_by: Optional[str] = None, **filters) -> List[Any]:
        model = _model(table)
        with self._wrap(f"get:{table}"):
            q = self.db.query(model).filter_by(**filters)
            if order_by:
                q = q.order_by(getattr(model, order_by))
            return q.all()

    def insert(self, table: str, rows: Iterable[Dict[str, Any]]) -> List[Any]:
        model = _model(table)
        with self._wrap(f"insert:{table}"):
            created = [model(**r) for r in rows]
            self.db.add_all(created)
            self.db.flush()
            self._commit_if_autonomous()
            return created

    def update(self, table: str, id: int, patch: Dict[str, Any]):
        model = _model(table)
        with self._wrap(f"update:{table}"):
            obj = self.db.get(model, id)
            if obj is None:
                raise NotFound(f"{table} {id} não encontrado", table=table, id=id)
            for k, v in patch.items():
                setattr(obj, k, v)
            self.db.flush()
            self._commit_if_autonomous()
            return obj

    def delete_returning(self, table: str, id: int, **scope) -> Dict[str, Any]:
        """DELETE ... RETURNING en una sola sentencia: dos llamadas con el mismo id
        nunca devuelven la fila dos veces."""
        model = _model(table)
        with self._wrap(f"delete:{table}"):
            stmt = delete(model).where(model.id == id)
            for k, v in scope.items():
                stmt = stmt.where(getattr(model, k) == v)
            stmt = stmt.returning(*model.__table__.columns).execution_options(synchronize_session=False)
            row = self.db.execute(stmt).first()
            self._commit_if_autonomous()
        if row is None:
            raise NotFound(f"{table} {id} não encontrado", table=table, id=id)
        return row_to_dict(row)

    # ---------- operaciones atómicas ----------
    def decrement_stock(self, store_id: int, product_id: int, qty: int) -> bool:
        """stock = stock - qty WHERE stock >= qty. False si no alcanzó el stock."""
        with self._wrap("decrement_stock"):
            stmt = (
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.store_id == store_id,
                    Product.stock_quantity >= qty,
                )
                .values(stock_quantity=Product.stock_quantity - qty)
                .execution_options(synchronize_session=False)
            )
            res = self.db.execute(stmt)
            self._commit_if_autonomous()
            return bool(res.rowcount)

    def next_sale_number(self, store_id: int) -> int:
        with self._wrap("next_sale_number"):
            current = self.db.execute(
                select(func.coalesce(func.max(Sale.sale_number), 0)).where(Sale.store_id == store_id)
            ).scalar()
            return int(current or 0) + 1

    def search_products(self, store_id: int, text: str, limit: int) -> List[Product]:
        with self._wrap("search_products"):
            like = f"%{text.lower()}%"
            return (
                self.db.query(Product)
                .filter(
                    Product.store_id == store_id,
                    Product.active.is_(True),
                    or_(func.lower(Product.name).like(like), Product.barcode == text),
                )
                .order_by(Product.name)
                .limit(limit)
                .all()
            )
