import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from .db import Base, SessionLocal, engine
from .models.product import Product
from .models.sale import PendingSale, Sale  # noqa: F401 (registra tablas)
from .models.stock import StockMovement  # noqa: F401
from .models.store import Profile, Store

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    # nombre, precio, stock, código de barras
    ("Arroz Tipo 1 5kg", "27.90", 40, "7891000100103"),
    ("Feijão Carioca 1kg", "8.49", 60, "7891000200200"),
    ("Café Torrado 500g", "16.99", 25, "7891000300307"),
    ("Açúcar Refinado 1kg", "4.79", 80, "7891000400404"),
    ("Leite Integral 1L", "5.29", 120, "7891000500501"),
    ("Sabonete Neutro", "2.50", 3, "7891000600608"),
]


def get_or_create(session: Session, model, defaults=None, **kwargs):
    inst = session.query(model).filter_by(**kwargs).first()
    if inst:
        return inst, False
    params = dict(kwargs)
    if defaults:
        params.update(defaults)
    inst = model(**params)
    session.add(inst)
    session.commit()
    session.refresh(inst)
    return inst, True


def seed(db: Session) -> dict:
    store, _ = get_or_create(
        db,
        Store,
        name="Mercadinho Demo",
        defaults={
            "cnpj": "12.345.678/0001-90",
            "phone": "(11) 4002-8922",
            "address": "Rua das Flores, 100",
            "city": "São Paulo",
            "state": "SP",
        },
    )
    operator, created = get_or_create(db, Profile, email="caixa@demo.local", defaults={"store_id": store.id})
    if not created and operator.store_id is None:
        operator.store_id = store.id
        db.commit()
    # operador sin tienda, para probar el bloqueo de caja
    get_or_create(db, Profile, email="sem.loja@demo.local")

    products = []
    for name, price, stock, barcode in DEMO_PRODUCTS:
        p, _ = get_or_create(
            db,
            Product,
            store_id=store.id,
            barcode=barcode,
            defaults={"name": name, "price": Decimal(price), "stock_quantity": stock, "unit": "un"},
        )
        products.append(p)
    return {"store_id": store.id, "user_id": operator.id, "products": len(products)}


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()
    try:
        out = seed(db)
        logger.info(
            "Seed OK | store_id=%s user_id=%s (X-User-Id) products=%s",
            out["store_id"], out["user_id"], out["products"],
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
