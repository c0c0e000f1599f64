import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_list(name: str, default: str = "") -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class Settings:
    # API settings
    api_host: str = field(default_factory=lambda: os.getenv("API_HOST", "127.0.0.1"))
    api_port: int = field(default_factory=lambda: int(os.getenv("API_PORT", "3001")))
    api_base_url: str = field(default_factory=lambda: os.getenv("API_BASE_URL", "http://localhost:3001/api"))
    api_timeout: float = field(default_factory=lambda: float(os.getenv("API_TIMEOUT", "10")))

    # Access PINs
    admin_pin: str = field(default_factory=lambda: os.getenv("ADMIN_PIN", "1234"))
    guest_pins: List[str] = field(default_factory=lambda: _env_list("GUEST_PINS"))

    # Storage
    db_file: Optional[str] = field(default_factory=lambda: os.getenv("LIBRARY_DB_FILE"))

    # Lending rules
    max_active_loans: int = field(default_factory=lambda: int(os.getenv("MAX_ACTIVE_LOANS", "3")))
    default_loan_days: int = field(default_factory=lambda: int(os.getenv("DEFAULT_LOAN_DAYS", "14")))
    due_soon_days: int = field(default_factory=lambda: int(os.getenv("DUE_SOON_DAYS", "3")))
    recent_activity_limit: int = field(default_factory=lambda: int(os.getenv("RECENT_ACTIVITY_LIMIT", "5")))

    # Application
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "Docucenter"))
    app_version: str = field(default_factory=lambda: os.getenv("APP_VERSION", "1.0.0"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG"))
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))


settings = Settings()
