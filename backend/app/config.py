import os
from typing import List


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _split_csv(raw: str, *, default: List[str]) -> List[str]:
    parts = [p.strip() for p in (raw or "").split(",")]
    return [p for p in parts if p] or default


class Settings:
    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.db_url = os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL") or "postgresql://localhost/pos"
        # Override in prod via env: DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
        self.db_pool_min = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max = _env_int("DB_POOL_MAX_SIZE", 10)
        # Origins allowed to call the API from a browser (register UIs, back office).
        self.cors_origins = _split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:7070"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Off by default: branch stock may go negative and is reconciled by purchases/counts.
        # Registers replay offline sales later; refusing them would block their sync queue.
        self.enforce_stock_on_sale = _env_flag("ENFORCE_STOCK_ON_SALE")


settings = Settings()
