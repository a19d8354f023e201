# backend/eventstock/config.py
from __future__ import annotations
import os


def _csv_env(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/checkout.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///checkout.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Upper bound on rows returned by a single audit log query
    AUDIT_QUERY_LIMIT = int(os.environ.get("AUDIT_QUERY_LIMIT", "500"))

    # Category names seeded as consumable by `flask system seed-categories`
    CONSUMABLE_CATEGORY_NAMES = _csv_env(
        "CONSUMABLE_CATEGORY_NAMES",
        "Consumables,Puja Consumables",
    )
