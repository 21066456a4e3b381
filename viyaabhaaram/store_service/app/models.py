from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, Text
from .database import Base # Import the Base class from our database setup


def utcnow():
    return datetime.now(timezone.utc)


# A merchant account. Items and transactions are owned by its email.
class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    business_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    mobile = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# Defines the ORM model for an inventory item in the database.
class Item(Base):
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, index=True)
    user_email = Column(String, index=True, nullable=False) # Owning merchant account.
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False) # Fixed-point, never float.
    stock = Column(Integer, nullable=False, default=0) # Never below zero.
    category = Column(String, default="General")
    image = Column(Text) # Binary-as-text blob.
    sizes = Column(String)
    colors = Column(String)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


# A recorded sale or purchase. Rows are never updated once written.
class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_email = Column(String, index=True, nullable=False)
    type = Column(String, nullable=False) # "SALE" or "PURCHASE".
    amount = Column(Numeric(12, 2), nullable=False)
    items_data = Column(JSON, default=list) # Frozen snapshot of the cart lines.
    date = Column(DateTime(timezone=True), default=utcnow, index=True)


# One applied stock change, keyed by the caller. A replayed key is never applied twice.
class StockAdjustment(Base):
    __tablename__ = "stock_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, index=True, nullable=False)
    item_id = Column(Integer, index=True, nullable=False)
    delta = Column(Integer, nullable=False) # Negative for a sale, positive for a purchase.
    shortfall = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
