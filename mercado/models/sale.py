from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint

from ..db import Base


class Sale(Base):
    __tablename__ = "sales"
    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    sale_number = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    total_amount = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), default=0)
    final_amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)  # cash | credit | debit | pix | multiple
    sale_type = Column(String(20), default="cash")  # cash | installment
    status = Column(String(20), default="completed")  # completed | pending
    idempotency_key = Column(String(80), unique=True, index=True, nullable=True)

    __table_args__ = (UniqueConstraint("store_id", "sale_number", name="uq_store_sale_number"),)


class SaleItem(Base):
    __tablename__ = "sale_items"
    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    product_name = Column(String(120))
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)


class SalePayment(Base):
    __tablename__ = "sale_payments"
    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    payment_method = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)


class Installment(Base):
    __tablename__ = "installments"
    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(10), default="pending")  # pending | paid
    paid_date = Column(Date, nullable=True)

    __table_args__ = (UniqueConstraint("sale_id", "installment_number", name="uq_installment_number"),)


class PendingSale(Base):
    __tablename__ = "pending_sales"
    id = Column(Integer, primary_key=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    cart = Column(Text, nullable=False)  # JSON: [{product_id, name, quantity, price}]
    created_at = Column(DateTime, default=datetime.utcnow)
