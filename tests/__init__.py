import os

# The store service binds its engine at import time; keep it off disk in tests.
os.environ.setdefault("DATABASE_URL", "sqlite://")
