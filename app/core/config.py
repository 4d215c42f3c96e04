from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: app/core/config.py -> app/core -> app -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

DEFAULT_MODULE_PRICES = {
    "cattle": 49,
    "milk": 49,
    "health": 39,
    "breeding": 39,
    "feed": 29,
    "finance": 49,
    "employees": 29,
    "insurance": 29,
    "milk_delivery": 49,
    "reports": 39,
}


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./dairypro.db"
    # Comma separated origins; "*" in development
    cors_origins: str = "*"
    rate_limit_per_minute: int = 60
    rate_limit_register_per_minute: int = 3
    admin_secret: str = ""

    # Payment gateway (Razorpay-compatible REST API)
    gateway_key_id: str = ""
    gateway_key_secret: str = ""       # signs checkout callbacks: HMAC(order_id|payment_id)
    gateway_webhook_secret: str = ""   # signs webhook bodies: HMAC(raw body)
    gateway_base_url: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 15.0
    gateway_currency: str = "INR"
    # Fetch the payment from the gateway after the signature check (amount/capture)
    gateway_secondary_check: bool = True
    brand_name: str = "DairyPro"

    # Billing policy
    order_expiry_minutes: int = 30
    manual_expiry_hours: int = 48
    trial_days: int = 5
    trial_max_days: int = 10
    # Extra days tolerated on top of plan.days before a subscription counts as tampered
    tamper_buffer_days: int = 5
    tamper_fallback_max_days: int = 400
    max_daily_submissions: int = 10
    max_accounts_per_ip_per_week: int = 3

    # Custom plan: monthly price = sum(module prices) clamped to [min, max], times period
    custom_module_prices: dict[str, int] = dict(DEFAULT_MODULE_PRICES)
    custom_min_monthly: int = 199
    custom_max_monthly: int = 499
    custom_max_period_months: int = 12

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("gateway_key_id", "gateway_key_secret", "gateway_webhook_secret", mode="before")
    @classmethod
    def strip_gateway_keys(cls, v: str | None) -> str:
        """Copy/paste whitespace breaks HMAC comparison."""
        return (v or "").strip()


settings = Settings()
