import json
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Gift Registry API"
    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"
    environment: str = "local"
    backend_cors_origins_raw: str = ""  # Comma-separated or JSON array

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "allow",
    }

    @property
    def backend_cors_origins(self) -> list[str]:
        """Parse CORS origins from raw string."""
        raw = os.getenv("BACKEND_CORS_ORIGINS", self.backend_cors_origins_raw).strip()
        if not raw:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list):
                    return [str(item).strip() for item in parsed if str(item).strip()]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    # Database: sqlite+aiosqlite:///./giftregistry.db (dev) | postgresql+asyncpg://... (prod)
    postgres_dsn: str = "sqlite+aiosqlite:///./giftregistry.db"

    access_token_expire_minutes: int = 60 * 24 * 7
    refresh_token_expire_minutes: int = 60 * 24 * 30
    # SECURITY: override via JWT_SECRET_KEY env var
    jwt_secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"

    # SMTP settings (optional)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "noreply@giftregistry.local"
    smtp_use_tls: bool = True
    email_notifications_enabled: bool = True

    # Payment processor (Stripe-compatible REST API)
    payment_secret_key: str = ""
    payment_webhook_secret: str = ""
    payment_api_base: str = "https://api.stripe.com"
    payment_api_timeout_seconds: float = 15.0
    payment_webhook_tolerance_seconds: int = 300
    default_currency: str = "INR"

    rate_limit_enabled: bool = True
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_login_requests: int = 5

    recent_contributions_limit: int = 10
    search_results_limit: int = 50
    reservation_hours: int = 24
    # Create tables on startup when no migrations are run
    create_schema_on_startup: bool = True

    log_level: str = "INFO"
    log_file: str = ""

    @property
    def payments_configured(self) -> bool:
        return bool(self.payment_secret_key)


settings = Settings()
