# clinic_billing/core/config.py
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
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Clinic Billing")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "clinic_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "clinic_erp")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins over the MYSQL_* parts when set
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL") or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    # ---------- Invoice numbering ----------
    INVOICE_NUMBER_PREFIX: str = os.getenv("INVOICE_NUMBER_PREFIX", "INV-")
    INVOICE_NUMBER_PADDING: int = int(
        os.getenv("INVOICE_NUMBER_PADDING", "6"))

    # ---------- Visit -> invoice conversion ----------
    INVOICE_CONVERSION_CHUNK_SIZE: int = int(
        os.getenv("INVOICE_CONVERSION_CHUNK_SIZE", "100"))

    # per-invoice transaction: wait-for-lock bound / total execution bound
    INVOICE_TX_MAX_WAIT_SECONDS: float = float(
        os.getenv("INVOICE_TX_MAX_WAIT_SECONDS", "5"))
    INVOICE_TX_TIMEOUT_SECONDS: float = float(
        os.getenv("INVOICE_TX_TIMEOUT_SECONDS", "15"))

    # per-chunk stock aggregate transaction
    STOCK_TX_MAX_WAIT_SECONDS: float = float(
        os.getenv("STOCK_TX_MAX_WAIT_SECONDS", "10"))
    STOCK_TX_TIMEOUT_SECONDS: float = float(
        os.getenv("STOCK_TX_TIMEOUT_SECONDS", "30"))

    # true -> a whole chunk (invoices + stock update) is one transaction
    INVOICE_CONVERSION_ATOMIC_CHUNKS: bool = _flag(
        "INVOICE_CONVERSION_ATOMIC_CHUNKS")

    DISCONNECT_POLL_SECONDS: float = float(
        os.getenv("DISCONNECT_POLL_SECONDS", "0.5"))


settings = Settings()
