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
    return int(_getenv(name, str(default)) or str(default))


def _getenv_float(name: str, default: float) -> float:
    return float(_getenv(name, str(default)) or str(default))


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
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.frontend_url = _getenv("FRONTEND_URL", "http://localhost:5173") or "http://localhost:5173"
        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

        self.google_client_id = _getenv("GOOGLE_CLIENT_ID")
        self.google_extension_client_id = _getenv("GOOGLE_EXTENSION_CLIENT_ID")
        self.session_secret = _getenv("SESSION_SECRET", "dev-session-secret-change-me") or "dev-session-secret-change-me"
        self.session_ttl_s = _getenv_int("SESSION_TTL_S", 7 * 24 * 3600)

        self.hold_backend = (_getenv("HOLD_BACKEND", "database") or "database").lower()
        self.hold_ttl_s = _getenv_int("HOLD_TTL_S", 3600)
        self.hold_sweep_interval_s = _getenv_int("HOLD_SWEEP_INTERVAL_S", 1800)
        self.free_tier_credits = _getenv_float("FREE_TIER_CREDITS", 7.0)
        self.paid_call_timeout_s = _getenv_float("PAID_CALL_TIMEOUT_S", 330.0)
        self.ledger_write_retries = _getenv_int("LEDGER_WRITE_RETRIES", 3)

        self.profile_extraction_cost = _getenv_float("PROFILE_EXTRACTION_COST", 1.0)
        self.profile_rescrape_cooldown_h = _getenv_int("PROFILE_RESCRAPE_COOLDOWN_H", 24)
        self.message_generation_cost = _getenv_float("MESSAGE_GENERATION_COST", 1.0)
        self.message_dedup_window_s = _getenv_int("MESSAGE_DEDUP_WINDOW_S", 30)

        self.bright_data_api_key = _getenv("BRIGHT_DATA_API_KEY")
        self.bright_data_dataset_id = _getenv("BRIGHT_DATA_DATASET_ID")
        self.bright_data_base_url = _getenv("BRIGHT_DATA_BASE_URL", "https://api.brightdata.com") or "https://api.brightdata.com"
        self.bright_data_max_wait_s = _getenv_float("BRIGHT_DATA_MAX_WAIT_S", 300.0)
        self.bright_data_poll_interval_s = _getenv_float("BRIGHT_DATA_POLL_INTERVAL_S", 10.0)

        self.llm_api_key = _getenv("LLM_API_KEY") or _getenv("OPENAI_API_KEY")
        self.llm_base_url = _getenv("LLM_BASE_URL")
        self.llm_model = _getenv("LLM_MODEL", "gpt-4o-mini")
        self.llm_temperature = _getenv_float("LLM_TEMPERATURE", 0.7)

        self.email_finder_enabled = _getenv_bool("EMAIL_FINDER_ENABLED", default=False)
        self.email_finder_cost = _getenv_float("EMAIL_FINDER_COST", 2.0)
        self.email_finder_timeout_s = _getenv_float("EMAIL_FINDER_TIMEOUT_S", 10.0)
        self.email_finder_rate_limit_per_hour = _getenv_int("EMAIL_FINDER_RATE_LIMIT_PER_HOUR", 100)
        self.snov_client_id = _getenv("SNOV_CLIENT_ID")
        self.snov_client_secret = _getenv("SNOV_CLIENT_SECRET")

        self.chargebee_site = _getenv("CHARGEBEE_SITE")
        self.chargebee_webhook_username = _getenv("CHARGEBEE_WEBHOOK_USERNAME")
        self.chargebee_webhook_password = _getenv("CHARGEBEE_WEBHOOK_PASSWORD")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def google_audiences(self) -> list[str]:
        return [a for a in (self.google_client_id, self.google_extension_client_id) if a]

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:5173", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
