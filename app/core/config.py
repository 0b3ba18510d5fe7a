# app/core/config.py
import os
from decimal import Decimal
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
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Clinic Billing API")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "clinic_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "clinic_billing")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins when set (sqlite for tests / local runs)
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL") or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    # ---------- Day bucketing ----------
    # analytics rows are keyed by the calendar day in this zone
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Manila")

    # ---------- Billing ----------
    CONSULTATION_FEE_DEFAULT: Decimal = Decimal(
        os.getenv("CONSULTATION_FEE_DEFAULT", "250"))
    CONSULTATION_FEE_FOLLOW_UP: Decimal = Decimal(
        os.getenv("CONSULTATION_FEE_FOLLOW_UP", "350"))
    SENIOR_PWD_DISCOUNT_RATE: Decimal = Decimal(
        os.getenv("SENIOR_PWD_DISCOUNT_RATE", "20"))
    DEFAULT_PAYMENT_METHOD: str = os.getenv("DEFAULT_PAYMENT_METHOD", "cash")

    # ---------- Cold archive ----------
    COLD_STORAGE_DIR: str = os.getenv("COLD_STORAGE_DIR",
                                      "./cold_storage/archives")
    COLD_ARCHIVE_AFTER_DAYS: int = int(
        os.getenv("COLD_ARCHIVE_AFTER_DAYS", "30"))

    # ---------- Seeding ----------
    SEED_CATALOG: bool = _flag("SEED_CATALOG")


settings = Settings()
