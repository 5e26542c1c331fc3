# backend/invoicing/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///invoicing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Fiscal authority (WSAA authentication + WSFE electronic invoicing)
    FISCAL_ENVIRONMENT = os.environ.get("FISCAL_ENVIRONMENT", "homologation")  # homologation | production
    FISCAL_CUIT = os.environ.get("FISCAL_CUIT", "")
    FISCAL_CERT_PATH = os.environ.get("FISCAL_CERT_PATH")
    FISCAL_KEY_PATH = os.environ.get("FISCAL_KEY_PATH")
    FISCAL_SERVICE = os.environ.get("FISCAL_SERVICE", "wsfe")
    FISCAL_TIMEOUT_SECONDS = float(os.environ.get("FISCAL_TIMEOUT_SECONDS", "30"))
    FISCAL_TIMEZONE = os.environ.get("FISCAL_TIMEZONE", "America/Argentina/Buenos_Aires")
    FISCAL_CURRENCY_CODE = os.environ.get("FISCAL_CURRENCY_CODE", "PES")

    # Flat VAT rate in basis points (2100 = 21%)
    INVOICE_TAX_RATE_BPS = int(os.environ.get("INVOICE_TAX_RATE_BPS", "2100"))

    CONCURRENCY_RETRY_ATTEMPTS = int(os.environ.get("CONCURRENCY_RETRY_ATTEMPTS", "3"))
