# --- Imports ---
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from passlib.context import CryptContext
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session # For database session management

# Internal imports from sibling modules
from .database import engine, get_db
from .models import Account, Base, Item, Transaction
from .stock import apply_decrement, apply_increment
from ...logger import setup_logger

setup_logger()
logger = logging.getLogger(__name__)

# --- Database Initialization ---
# Create database tables defined in models.py if they don't exist
Base.metadata.create_all(bind=engine)

# Passwords are only ever stored as pbkdf2_sha256 hashes.
pwd_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Starts the stock reconciliation consumer when enabled in the environment."""
    if os.getenv("ENABLE_STOCK_CONSUMER", "0").strip() in {"1", "true", "yes"}:
        from .consumers import start_consumer_thread
        start_consumer_thread()
    yield


# --- App Instance ---
app = FastAPI(title="Viyaabhaaram Store Service", lifespan=lifespan)


# --- Request Models ---
class AccountCreate(BaseModel):
    """Pydantic model for registering a merchant account."""
    business_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    mobile: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

class LoginRequest(BaseModel):
    """Credential is either the account email or its mobile number."""
    credential: str
    password: str

class PasswordUpdate(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=1)

class ItemCreate(BaseModel):
    """Pydantic model for adding an item to a merchant's catalog."""
    user_email: str
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    stock: int = Field(..., ge=0)
    category: Optional[str] = "General"
    image: Optional[str] = None
    sizes: Optional[str] = None
    colors: Optional[str] = None
    description: Optional[str] = None

class ItemUpdate(BaseModel):
    """Only the fields that are set are written."""
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    image: Optional[str] = None
    sizes: Optional[str] = None
    colors: Optional[str] = None
    description: Optional[str] = None

class StockChange(BaseModel):
    """`key` makes the change idempotent: a replayed key is not applied again."""
    quantity: int = Field(..., ge=1)
    key: Optional[str] = Field(None, min_length=1, max_length=128)

class TransactionCreate(BaseModel):
    user_email: str
    type: str = Field(..., pattern="^(SALE|PURCHASE)$")
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    items_data: List[Any] = Field(default_factory=list)
    date: Optional[datetime] = None


# --- Serialisers ---
# Money goes over the wire as a decimal string so clients never see a float.
def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

def account_out(account: Account) -> dict:
    return {
        "id": account.id,
        "business_name": account.business_name,
        "email": account.email,
        "mobile": account.mobile,
    }

def item_out(item: Item) -> dict:
    return {
        "id": item.id,
        "user_email": item.user_email,
        "name": item.name,
        "price": str(item.price),
        "stock": item.stock,
        "category": item.category,
        "image": item.image,
        "sizes": item.sizes,
        "colors": item.colors,
        "description": item.description,
        "created_at": _iso(item.created_at),
    }

def transaction_out(tx: Transaction) -> dict:
    return {
        "id": tx.id,
        "user_email": tx.user_email,
        "type": tx.type,
        "amount": str(tx.amount),
        "items_data": tx.items_data or [],
        "date": _iso(tx.date),
    }


def _get_item_or_404(db: Session, item_id: int) -> Item:
    item = db.get(Item, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


# --- Endpoints ---
@app.get("/")
def root():
    """Health check endpoint to confirm the store service is operational."""
    return {"message": "Store service is running"}

@app.get("/health")
def health():
    return {"status": "ok"}


# Accounts
@app.post("/api/v1/accounts", status_code=201)
def create_account(req: AccountCreate, db: Session = Depends(get_db)):
    """
    Registers a merchant account.
    - Rejects with 409 when the email or the mobile number is already taken.
    """
    existing = db.query(Account).filter(
        or_(Account.email == req.email, Account.mobile == req.mobile)
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="User already exists")

    account = Account(
        business_name=req.business_name,
        email=req.email,
        mobile=req.mobile,
        password_hash=pwd_ctx.hash(req.password),
    )
    db.add(account)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration.
        db.rollback()
        raise HTTPException(status_code=409, detail="User already exists")
    db.refresh(account)
    logger.info("Account created for %s", account.email)
    return account_out(account)

@app.get("/api/v1/accounts/lookup")
def lookup_account(email: Optional[str] = None, mobile: Optional[str] = None, db: Session = Depends(get_db)):
    """Finds an account whose email or mobile matches either argument."""
    clauses = []
    if email:
        clauses.append(Account.email == email)
    if mobile:
        clauses.append(Account.mobile == mobile)
    if not clauses:
        raise HTTPException(status_code=400, detail="email or mobile is required")

    account = db.query(Account).filter(or_(*clauses)).first()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account_out(account)

@app.post("/api/v1/accounts/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    """Looks an account up by email or mobile and verifies the password."""
    account = db.query(Account).filter(
        or_(Account.email == req.credential, Account.mobile == req.credential)
    ).first()
    if not account or not pwd_ctx.verify(req.password, account.password_hash):
        raise HTTPException(status_code=401, detail="Invalid Credentials")
    return account_out(account)

@app.put("/api/v1/accounts/{email}/password")
def update_password(email: str, req: PasswordUpdate, db: Session = Depends(get_db)):
    account = db.query(Account).filter(Account.email == email).first()
    if not account or not pwd_ctx.verify(req.old_password, account.password_hash):
        raise HTTPException(status_code=401, detail="Invalid Credentials")

    account.password_hash = pwd_ctx.hash(req.new_password)
    db.commit()
    return {"status": "updated", "email": account.email}


# Items
@app.get("/api/v1/items")
def list_items(owner: str = Query(...), db: Session = Depends(get_db)):
    """Retrieves a merchant's items, newest first."""
    items = (
        db.query(Item)
        .filter(Item.user_email == owner)
        .order_by(Item.created_at.desc(), Item.id.desc())
        .all()
    )
    return [item_out(item) for item in items]

@app.post("/api/v1/items", status_code=201)
def create_item(req: ItemCreate, db: Session = Depends(get_db)):
    item = Item(**req.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item) # Picks up the store-assigned id and created_at
    return item_out(item)

@app.patch("/api/v1/items/{item_id}")
def update_item(item_id: int, req: ItemUpdate, db: Session = Depends(get_db)):
    """Writes only the fields present in the request body."""
    item = _get_item_or_404(db, item_id)
    for field, value in req.model_dump(exclude_unset=True).items():
        setattr(item, field, value)
    db.commit()
    db.refresh(item)
    return item_out(item)

@app.post("/api/v1/items/{item_id}/decrement")
def decrement_stock(item_id: int, req: StockChange, db: Session = Depends(get_db)):
    """
    Atomically takes stock off an item, flooring at zero.
    - `shortfall` is the part of the request that could not be covered.
    - A replayed `key` answers with the current level and changes nothing.
    """
    item, shortfall = apply_decrement(db, item_id, req.quantity, key=req.key)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    if shortfall:
        logger.warning("Item %s short by %s units on decrement", item_id, shortfall)
    return {"id": item.id, "stock": item.stock, "shortfall": shortfall}

@app.post("/api/v1/items/{item_id}/increment")
def increment_stock(item_id: int, req: StockChange, db: Session = Depends(get_db)):
    """Atomically adds stock to an item relative to the level it holds now."""
    item = apply_increment(db, item_id, req.quantity, key=req.key)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"id": item.id, "stock": item.stock, "shortfall": 0}

@app.delete("/api/v1/items/{item_id}")
def delete_item(item_id: int, db: Session = Depends(get_db)):
    item = _get_item_or_404(db, item_id)
    db.delete(item)
    db.commit()
    return {"status": "deleted", "id": item_id}


# Transactions
@app.get("/api/v1/transactions")
def list_transactions(owner: str = Query(...), db: Session = Depends(get_db)):
    """Retrieves a merchant's transactions, latest first."""
    transactions = (
        db.query(Transaction)
        .filter(Transaction.user_email == owner)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
        .all()
    )
    return [transaction_out(tx) for tx in transactions]

@app.post("/api/v1/transactions", status_code=201)
def create_transaction(req: TransactionCreate, db: Session = Depends(get_db)):
    tx = Transaction(
        user_email=req.user_email,
        type=req.type,
        amount=req.amount,
        items_data=req.items_data,
        date=req.date or datetime.now(timezone.utc),
    )
    db.add(tx)
    db.commit()
    db.refresh(tx)
    logger.info("%s transaction %s recorded for %s (%s)", tx.type, tx.id, tx.user_email, tx.amount)
    return transaction_out(tx)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
