from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite+aiosqlite:///./signals.db"
    database_echo: bool = False

    # Fernet key used to encrypt exchange API secrets at rest
    encryption_key: str = ""

    # Telegram delivery (Bot API over HTTPS)
    telegram_bot_token: str = ""
    telegram_channel_id: str = ""  # Channel that receives signal-level broadcasts
    telegram_api_base: str = "https://api.telegram.org"

    # Optional shared token for the read API (X-API-Token header)
    api_token: str = ""

    # Polling intervals (seconds)
    signal_poll_seconds: float = 5.0
    position_poll_seconds: float = 5.0
    dispatch_poll_seconds: float = 3.0

    # Signal lifecycle
    entry_tolerance_pct: float = 0.1  # Price within this % of entry activates the signal
    signal_entry_timeout_minutes: int = 1440  # Pending signals older than this expire

    # Public price source used by signal watchers and paper accounts
    price_feed_exchange: str = "binance"
    price_feed_market: str = "futures"
    price_cache_seconds: float = 1.0

    # Exchange interaction
    order_confirm_timeout_seconds: float = 10.0
    price_retry_attempts: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 30.0

    # Notifications / shutdown
    notification_timeout_seconds: float = 10.0
    shutdown_timeout_seconds: float = 60.0

    log_level: str = "INFO"

    @field_validator("entry_tolerance_pct")
    @classmethod
    def non_negative_tolerance(cls, v: float) -> float:
        """Entry tolerance is a distance, negative values make no sense"""
        if v < 0:
            raise ValueError("entry_tolerance_pct must be >= 0")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
