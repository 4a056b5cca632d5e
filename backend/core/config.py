"""
SwiftBuyBack Backend Configuration

Uses pydantic-settings for type-safe environment variable loading.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Find .env file: check CWD first, then parent (project root)
_env_file = Path(".env")
if not _env_file.exists():
    _parent_env = Path(__file__).resolve().parent.parent.parent / ".env"
    if _parent_env.exists():
        _env_file = _parent_env


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "SwiftBuyBack"
    app_version: str = "1.0.0"
    app_env: str = "local"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./buyback.db"
    database_echo: bool = False

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Registered provider names (see integrations.base)
    thread_provider: str = "zendesk"
    label_provider: str = "shipengine"

    # ── Ticketing (buyer conversation threads) ──────────────────────
    zendesk_subdomain: str = ""
    zendesk_user: str = ""
    zendesk_api_token: str = ""

    # ── Shipping labels ──────────────────────────────────────────────
    shipengine_api_key: str = ""
    shipengine_base_url: str = "https://api.shipengine.com/v1"
    label_service_code: str = "usps_priority_mail"
    package_weight_lb: float = 1.0

    # Business address: ship-to for outbound kits, ship-from for returns
    business_name: str = "SwiftBuyBack"
    business_street: str = "1795 west 3rd st"
    business_city: str = "Anytown"
    business_state: str = "CA"
    business_postal_code: str = "90210"
    business_country: str = "US"

    # Bounded timeout for every outbound provider call
    provider_timeout_seconds: float = 15.0

    # ── Order lifecycle ──────────────────────────────────────────────
    reoffer_window_days: int = 7
    order_number_max_attempts: int = 20
    reoffer_sweep_hour: int = 4  # UTC

    # A thread claim older than this belongs to a sender that died before binding
    thread_claim_ttl_seconds: int = 120

    # Buyer-facing action links
    frontend_url: str = "https://buyback-a0f05.web.app"

    # CORS
    cors_origins: list[str] = ["https://buyback-a0f05.web.app", "https://toratyosef.github.io"]

    model_config = {
        "env_file": str(_env_file),
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    settings = Settings()
    _enforce_guardrails(settings)
    return settings


def _enforce_guardrails(settings: Settings) -> None:
    env = settings.app_env.strip().lower()
    is_local = env in {"", "local", "dev", "development", "test"}
    if is_local:
        return

    if settings.debug:
        raise ValueError("Refusing to start with debug=true outside local/dev/test")
