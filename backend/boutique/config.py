# backend/boutique/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/boutique.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///boutique.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # What happens when a decrease adjustment exceeds on-hand stock:
    # "clamp"  -> floor at zero and record the discarded excess on the audit line
    # "reject" -> refuse the whole batch
    OVERDRAFT_POLICY = os.environ.get("OVERDRAFT_POLICY", "clamp")

    # Bounded retry for conflicting stock mutations
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF = float(os.environ.get("STOCK_RETRY_BACKOFF", "0.05"))

    # Reports page through ledger lines instead of loading a whole window at once
    REPORT_SCAN_BATCH_SIZE = int(os.environ.get("REPORT_SCAN_BATCH_SIZE", "500"))

    TOP_PRODUCTS_DEFAULT_LIMIT = int(os.environ.get("TOP_PRODUCTS_DEFAULT_LIMIT", "10"))
    TOP_PRODUCTS_MAX_LIMIT = int(os.environ.get("TOP_PRODUCTS_MAX_LIMIT", "100"))
