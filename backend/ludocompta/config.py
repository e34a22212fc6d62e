# backend/ludocompta/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/ludocompta.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///ludocompta.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Register that receives automatic encashments (membership payments, late fees)
    MAIN_CASH_REGISTER_CODE = os.environ.get("MAIN_CASH_REGISTER_CODE", "CAISSE_PRINC")

    # Fallback accounts when no mapping row matches
    DEFAULT_ENCASHMENT_ACCOUNT = os.environ.get("DEFAULT_ENCASHMENT_ACCOUNT", "5121")
    DEFAULT_STOCK_ACCOUNT = os.environ.get("DEFAULT_STOCK_ACCOUNT", "2184")

    PIECE_NUMBER_PAD = int(os.environ.get("PIECE_NUMBER_PAD", "6"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
