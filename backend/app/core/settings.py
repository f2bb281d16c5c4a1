import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./sql_app.db") or "sqlite:///./sql_app.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("VITE_SUPABASE_URL")
        self.supabase_anon_key = _getenv("SUPABASE_ANON_KEY") or _getenv("VITE_SUPABASE_ANON_KEY")
        self.supabase_service_role_key = _getenv("SUPABASE_SERVICE_ROLE_KEY")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.frontend_url = _getenv("FRONTEND_URL", "http://localhost:5173") or "http://localhost:5173"

        self.stripe_secret_key = _getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = _getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_success_url = _getenv("STRIPE_SUCCESS_URL") or f"{self.frontend_url}/leads?checkout=success"
        self.stripe_cancel_url = _getenv("STRIPE_CANCEL_URL") or f"{self.frontend_url}/leads?checkout=cancel"

        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

        # Conflicting ledger transactions are re-run this many times before
        # the caller sees a transient error.
        self.ledger_tx_max_attempts = max(1, _getenv_int("LEDGER_TX_MAX_ATTEMPTS", 5))
        self.ledger_tx_backoff_ms = max(0, _getenv_int("LEDGER_TX_BACKOFF_MS", 25))

        self.rate_limits_enabled = _getenv_bool("RATE_LIMITS_ENABLED", default=True)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:5173", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
