# backend/app/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orders.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orders.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upcharge added to the unit price for every size tier above the first
    SIZE_UPCHARGE = int(os.environ.get("SIZE_UPCHARGE", "5000"))

    # Voucher hour windows are evaluated against the store's wall clock
    STORE_TIMEZONE = os.environ.get("STORE_TIMEZONE", "Asia/Ho_Chi_Minh")

    # Seconds an event stream waits before sending a keep-alive comment
    CHANGE_FEED_STREAM_TIMEOUT = float(os.environ.get("CHANGE_FEED_STREAM_TIMEOUT", "15"))

    # Bearer session lifetimes
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))
