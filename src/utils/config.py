from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _get_bool(*keys: str, default: bool = False) -> bool:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


def _get_ms(*keys: str, default: int) -> float:
    """Read a millisecond setting and return it in seconds."""
    return _get_float(*keys, default=float(default)) / 1000.0


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    api_token: str
    db_path: str
    currency_symbol: str
    shipping_debounce: float
    quantity_debounce: float
    express_surcharge: float
    checkout_tolerance: float
    http_timeout: float
    cart_ttl_hours: float
    offline: bool
    log_file: str

    @property
    def is_guest(self) -> bool:
        return not self.api_token


settings = Settings(
    api_base_url=_get_env("STOREFRONT_API_URL", "API_URL", default="http://localhost:8000")
    or "http://localhost:8000",
    api_token=_get_env("STOREFRONT_API_TOKEN", "API_TOKEN", default="") or "",
    db_path=_get_env("DB_PATH", default=str(ROOT_DIR / "data" / "storefront.sqlite"))
    or str(ROOT_DIR / "data" / "storefront.sqlite"),
    currency_symbol=_get_env("CURRENCY_SYMBOL", default="$") or "$",
    shipping_debounce=_get_ms("SHIPPING_DEBOUNCE_MS", default=1000),
    quantity_debounce=_get_ms("QUANTITY_DEBOUNCE_MS", default=400),
    express_surcharge=_get_float("EXPRESS_SURCHARGE", default=1.5),
    checkout_tolerance=_get_float("CHECKOUT_TOLERANCE", default=0.01),
    http_timeout=_get_float("HTTP_TIMEOUT", default=10.0),
    cart_ttl_hours=_get_float("CART_TTL_HOURS", default=24.0),
    offline=_get_bool("STOREFRONT_OFFLINE"),
    log_file=_get_env("LOG_FILE", default="") or "",
)
