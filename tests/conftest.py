import os

# BD en memoria compartida antes de importar la app
os.environ["DB_URL"] = "sqlite://"

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from mercado.db import Base, SessionLocal, engine
from mercado.main import app
from mercado.middleware.idempotency import replay_store
from mercado.models.product import Product
from mercado.models.store import Profile, Store
from mercado.routers.pdv import reset_checkouts
from mercado.services.datastore import DataStore


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return DataStore(db)


def _product(db, store_id, name, price, stock, barcode=None, active=True):
    p = Product(
        store_id=store_id,
        name=name,
        price=Decimal(price),
        stock_quantity=stock,
        barcode=barcode,
        active=active,
    )
    db.add(p)
    return p


@pytest.fixture
def seeded(db):
    shop = Store(name="Mercadinho Teste", cnpj="12.345.678/0001-90", address="Rua A, 10", city="Campinas", state="SP")
    other = Store(name="Outra Loja")
    db.add_all([shop, other])
    db.flush()

    operator = Profile(email="caixa@teste.local", store_id=shop.id)
    orphan = Profile(email="semloja@teste.local", store_id=None)
    foreign = Profile(email="outra@teste.local", store_id=other.id)
    db.add_all([operator, orphan, foreign])

    products = {
        "arroz": _product(db, shop.id, "Arroz 5kg", "10.00", 5, "789100"),
        "feijao": _product(db, shop.id, "Feijão 1kg", "7.50", 10, "789200"),
        "cafe": _product(db, shop.id, "Café 500g", "17.50", 3, "789300"),
        "leite": _product(db, shop.id, "Leite Integral", "100.00", 2, "789400"),
        "vazio": _product(db, shop.id, "Produto Esgotado", "3.00", 0, "789500"),
        "inativo": _product(db, shop.id, "Arroz Antigo", "9.00", 50, "789600", active=False),
        "alheio": _product(db, other.id, "Arroz de Outra Loja", "11.00", 50, "789100"),
    }
    db.commit()
    return SimpleNamespace(
        store_id=shop.id,
        other_store_id=other.id,
        user_id=operator.id,
        orphan_id=orphan.id,
        foreign_id=foreign.id,
        products={k: v.id for k, v in products.items()},
    )


@pytest.fixture
def client(seeded):
    reset_checkouts()
    replay_store.clear()
    with TestClient(app) as c:
        yield c
    reset_checkouts()


def headers(user_id, **extra):
    h = {"X-User-Id": str(user_id)}
    h.update(extra)
    return h


@pytest.fixture
def auth(seeded):
    return headers(seeded.user_id)
