"""Service settings read from environment variables."""
from dataclasses import dataclass
import os


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    database_url: str = "sqlite:///./bookstore.db"
    db_timeout_seconds: float = 10.0
    rabbitmq_host: str = "rabbitmq"
    rabbitmq_exchange: str = "events"
    notifications_enabled: bool = False
    restock_on_cancel: bool = False
    claim_code_attempts: int = 5
    max_line_quantity: int = 100
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build Settings from the process environment, falling back to defaults."""
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        db_timeout_seconds=float(os.getenv("DB_TIMEOUT_SECONDS", defaults.db_timeout_seconds)),
        rabbitmq_host=os.getenv("RABBITMQ_HOST", defaults.rabbitmq_host),
        rabbitmq_exchange=os.getenv("RABBITMQ_EXCHANGE", defaults.rabbitmq_exchange),
        notifications_enabled=_flag("NOTIFICATIONS_ENABLED", defaults.notifications_enabled),
        restock_on_cancel=_flag("RESTOCK_ON_CANCEL", defaults.restock_on_cancel),
        claim_code_attempts=int(os.getenv("CLAIM_CODE_ATTEMPTS", defaults.claim_code_attempts)),
        max_line_quantity=int(os.getenv("MAX_LINE_QUANTITY", defaults.max_line_quantity)),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )
