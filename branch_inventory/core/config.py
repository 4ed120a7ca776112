# branch_inventory/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _mysql_uri() -> str:
    driver = os.getenv("DB_DRIVER", "pymysql")
    user = os.getenv("MYSQL_USER", "inventory_user")
    password = os.getenv("MYSQL_PASSWORD", "")
    host = os.getenv("MYSQL_HOST", "localhost")
    port = os.getenv("MYSQL_PORT", "3306")
    db_name = os.getenv("MYSQL_DB", "branch_inventory")
    auth = f"{quote_plus(user)}:{quote_plus(password)}" if password else quote_plus(user)
    return f"mysql+{driver}://{auth}@{host}:{port}/{db_name}?charset=utf8mb4"


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Branch Inventory Ledger")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- Database ----------
    # DATABASE_URL wins; otherwise assembled from MYSQL_* vars
    DATABASE_URL: str = os.getenv("DATABASE_URL", "") or _mysql_uri()
    DB_ECHO: bool = os.getenv("DB_ECHO", "false").lower() in {"1", "true", "yes"}

    # ---------- Logging / time ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    APP_TIMEZONE: str = os.getenv("APP_TIMEZONE", "Asia/Kolkata")

    # ---------- Inventory ----------
    INVENTORY_MAX_COMMIT_ATTEMPTS: int = int(
        os.getenv("INVENTORY_MAX_COMMIT_ATTEMPTS", "3"))
    EXPIRY_ALERT_DAYS: int = int(os.getenv("EXPIRY_ALERT_DAYS", "30"))
    BATCH_STOCK_PERIOD_DAYS: int = int(os.getenv("BATCH_STOCK_PERIOD_DAYS", "28"))
    DEFAULT_SOURCE_PREFIX_PO: str = os.getenv("DEFAULT_SOURCE_PREFIX_PO", "PO")
    DEFAULT_SOURCE_PREFIX_TRANSFER: str = os.getenv("DEFAULT_SOURCE_PREFIX_TRANSFER", "TR")


settings = Settings()
