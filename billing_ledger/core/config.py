# billing_ledger/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "HIMS Billing Ledger")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "hims_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "hims_billing")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # Full URL override (sqlite for local runs, postgres, ...)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    SQLALCHEMY_DATABASE_URI: str = DATABASE_URL or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    ADMIN_ALL_ACCESS: bool = _flag("ADMIN_ALL_ACCESS")

    # roles allowed to move money (payments, refunds, finalize, cancel, reconcile)
    BILLING_MONEY_ROLES: List[str] = _split_csv(
        os.getenv("BILLING_MONEY_ROLES", "admin,finance"))

    # ---------- Misc ----------
    TIMEZONE: str = os.getenv("TIMEZONE", "Africa/Nairobi")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # ---------- Billing numbering ----------
    INVOICE_NUMBER_PREFIX: str = os.getenv("INVOICE_NUMBER_PREFIX", "INV-")
    INVOICE_NUMBER_PADDING: int = int(
        os.getenv("INVOICE_NUMBER_PADDING", "4"))
    RECEIPT_NUMBER_PREFIX: str = os.getenv("RECEIPT_NUMBER_PREFIX", "RCPT-")
    REFUND_NUMBER_PREFIX: str = os.getenv("REFUND_NUMBER_PREFIX", "RFND-")

    # ---------- Reconciliation ----------
    RECONCILE_DEFAULT_METHOD: str = os.getenv("RECONCILE_DEFAULT_METHOD",
                                              "mpesa")


settings = Settings()
