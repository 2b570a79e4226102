from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _load_version() -> str:
    version_path = Path(__file__).resolve().parent / "VERSION"
    try:
        return version_path.read_text().strip()
    except FileNotFoundError:
        return "0.1.0"


class Settings(BaseSettings):
    """Application configuration using Pydantic settings."""

    # Database
    DATABASE_URL: str = "sqlite:///./data/lanwake.db"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]

    # Application
    APP_NAME: str = "LanWake"
    APP_VERSION: str = _load_version()
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Authentication ─────────────────────────────────────────────────
    # JWT access tokens (stateless, short-lived)
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRATION_MINUTES: int = 15

    # Refresh tokens (persisted by hash, rotated on every use)
    REFRESH_TOKEN_EXPIRATION_DAYS: int = 7
    REFRESH_TOKEN_REMEMBER_ME_DAYS: int = 30

    # Local admin bootstrap (set via env vars for first-run setup)
    LOCAL_ADMIN_USERNAME: Optional[str] = None
    LOCAL_ADMIN_PASSWORD: Optional[str] = None

    # ── Wake-on-LAN ────────────────────────────────────────────────────
    WOL_PORT: int = 9
    DEFAULT_BROADCAST_ADDRESS: str = "255.255.255.255"

    # ── Reachability monitor ───────────────────────────────────────────
    MONITOR_ENABLED: bool = True
    MONITOR_INTERVAL_SECONDS: float = 60.0
    PROBE_TIMEOUT_SECONDS: float = 2.0
    PROBE_CONCURRENCY: int = 32
    PING_BINARY: str = "ping"

    # ── Shutdown agent ─────────────────────────────────────────────────
    AGENT_PORT: int = 3001
    AGENT_SHARED_SECRET: str = ""
    AGENT_TIMEOUT_SECONDS: float = 5.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
