from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from ..db import Base


class StockMovement(Base):
    __tablename__ = "stock_movements"
    id = Column(Integer, primary_key=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)
    quantity = Column(Integer, nullable=False)  # negativo = salida
    type = Column(String(10), nullable=False)  # entry | exit
    reason = Column(String(120))  # e.g. 'Venda #12'
    created_at = Column(DateTime, default=datetime.utcnow)
