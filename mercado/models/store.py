from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from ..db import Base


class Store(Base):
    __tablename__ = "stores"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    cnpj = Column(String(20), nullable=True)
    phone = Column(String(40), nullable=True)
    address = Column(String(200), nullable=True)
    city = Column(String(80), nullable=True)
    state = Column(String(2), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Profile(Base):
    """Perfil del operador; sin store_id la caja queda bloqueada (configurar tienda)."""

    __tablename__ = "profiles"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(120), nullable=False, unique=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True, index=True)
