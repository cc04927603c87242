"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

from favsync.errors import ConfigurationError

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DEV_DIR = DATA_DIR / "dev"
STATE_DB = DATA_DIR / "state.db"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration."""

    # Upstream
    BASE_URL: str = os.getenv("BASE_URL", "https://www.vinted.fr")
    USER_ID: str | None = os.getenv("USER_ID")
    USER_AGENT: str = os.getenv("USER_AGENT", DEFAULT_USER_AGENT)
    COOKIE_DOMAIN: str = os.getenv("COOKIE_DOMAIN", "vinted.fr")

    # Initial session material
    INITIAL_COOKIES: str | None = os.getenv("INITIAL_COOKIES")
    CSRF_TOKEN: str | None = os.getenv("CSRF_TOKEN")
    ANON_ID: str | None = os.getenv("ANON_ID")

    # Fetching
    PER_PAGE: int = int(os.getenv("PER_PAGE", "20"))
    TIMEOUT: float = float(os.getenv("TIMEOUT", "30"))
    RATE_PER_SECOND: float = float(os.getenv("RATE_PER_SECOND", "1.0"))
    TOKEN_SAFETY_MARGIN: int = int(os.getenv("TOKEN_SAFETY_MARGIN", "300"))
    RATE_LIMIT_RETRIES: int = int(os.getenv("RATE_LIMIT_RETRIES", "2"))
    RATE_LIMIT_BASE_DELAY: float = float(os.getenv("RATE_LIMIT_BASE_DELAY", "5.0"))

    # Enrichment
    ENRICH_BATCH_SIZE: int = int(os.getenv("ENRICH_BATCH_SIZE", "20"))
    ENRICH_DELAY: float = float(os.getenv("ENRICH_DELAY", "2.0"))
    ENRICH_BATCH_PAUSE: float = float(os.getenv("ENRICH_BATCH_PAUSE", "10.0"))
    ENRICH_MAX_ITEMS: int = int(os.getenv("ENRICH_MAX_ITEMS", "0"))
    ENRICH_HTML_FALLBACK: bool = _bool_env("ENRICH_HTML_FALLBACK", "true")

    # Login agent
    LOGIN_AGENT_COMMAND: str = os.getenv(
        "LOGIN_AGENT_COMMAND", "node scripts/vinted-session-manager.js"
    )
    LOGIN_AGENT_TIMEOUT: float = float(os.getenv("LOGIN_AGENT_TIMEOUT", "180"))
    AUTO_LOGIN: bool = _bool_env("AUTO_LOGIN", "true")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        errors = []
        if not cls.BASE_URL.startswith(("http://", "https://")):
            errors.append("BASE_URL must be an http(s) URL")
        if cls.PER_PAGE <= 0:
            errors.append("PER_PAGE must be positive")
        if cls.TIMEOUT <= 0:
            errors.append("TIMEOUT must be positive")
        if cls.ENRICH_BATCH_SIZE <= 0:
            errors.append("ENRICH_BATCH_SIZE must be positive")
        if cls.RATE_LIMIT_RETRIES < 0:
            errors.append("RATE_LIMIT_RETRIES cannot be negative")
        if not cls.LOGIN_AGENT_COMMAND.strip():
            errors.append("LOGIN_AGENT_COMMAND is required")
        if errors:
            raise ConfigurationError(f"Configuration errors: {', '.join(errors)}")


config = Config()
