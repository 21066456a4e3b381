"""
Entity Schemas

Typed records for everything the store service returns. Every response is
validated here before the billing core touches it.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Account(BaseModel):
    id: int
    business_name: str
    email: str
    mobile: str


class Item(BaseModel):
    id: int = Field(..., description="Store-assigned identity")
    user_email: str = Field(..., description="Owning merchant account")
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0, description="Unit price in currency units")
    stock: int = Field(..., ge=0)
    category: Optional[str] = None
    image: Optional[str] = Field(None, description="Binary-as-text image blob")
    sizes: Optional[str] = None
    colors: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class LineSnapshot(BaseModel):
    """A cart line frozen at checkout time."""
    model_config = ConfigDict(frozen=True)

    item_id: int
    name: str
    price: Decimal = Field(..., ge=0)
    qty: int = Field(..., ge=1)

    @property
    def extension(self) -> Decimal:
        return self.price * self.qty


class Transaction(BaseModel):
    id: int
    user_email: str
    type: Literal["SALE", "PURCHASE"]
    amount: Decimal = Field(..., ge=0)
    items_data: List[LineSnapshot] = Field(default_factory=list)
    date: datetime


class StockLevel(BaseModel):
    """Result of a server-side stock change."""
    id: int
    stock: int = Field(..., ge=0)
    shortfall: int = Field(0, ge=0)
