from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./cashier_close.db"
    SECRET_KEY: str = "dev-insecure-key-change-in-production"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    LOG_LEVEL: str = "INFO"

    # CORS origins, comma-separated
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    # Cash counter defaults (one store)
    CASH_COUNTER_CURRENCY: str = "INR"
    CASH_COUNTER_DENOMINATIONS: list[str] = [
        "2000", "1000", "500", "200", "100", "50", "20", "10", "5", "2", "1",
    ]
    CASH_COUNTER_VARIANCE_THRESHOLD: str = "100"
    CASH_COUNTER_PAYMENT_MODES: list[str] = ["cash", "card", "upi", "other"]
    CASH_COUNTER_ACCOUNT_MAPPINGS: dict[str, str] = {
        "cash": "1000",
        "card": "1200",
        "upi": "1210",
        "other": "1290",
    }
    CASH_COUNTER_CLEARING_ACCOUNT: str = "2300"

    # Close lifecycle
    LEDGER_POST_TIMEOUT_SECONDS: float = 30.0
    LEDGER_POST_WORKERS: int = 4
    HISTORY_DEFAULT_LIMIT: int = 50
    HISTORY_MAX_LIMIT: int = 200

    # Audit delivery
    AUDIT_MAX_ATTEMPTS: int = 5
    AUDIT_RETRY_BACKOFF_SECONDS: float = 0.5


settings = Settings()
