import os

# Base URL of the store service.
STORE_BASE = os.getenv("STORE_BASE", "http://localhost:8000").rstrip("/")

ACCOUNTS_URL = f"{STORE_BASE}/api/v1/accounts"
ITEMS_URL = f"{STORE_BASE}/api/v1/items"
TRANSACTIONS_URL = f"{STORE_BASE}/api/v1/transactions"

# Per-request timeout for every store call.
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "8"))

RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")

DEFAULT_CATEGORY = "General"
