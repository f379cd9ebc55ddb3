from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, Numeric, String

from ..db import Base


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    unit = Column(String(20), default="un")
    barcode = Column(String(50), index=True, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
    )
