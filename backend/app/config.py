"""
Application configuration, read from the environment and `.env`.

All environment variables are defined in the root .env file.
This module loads them via pydantic-settings and exposes a singleton `settings`.
"""

import logging
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import Field, PrivateAttr

_config_logger = logging.getLogger("opsquery.config")

# Resolve paths relative to repo root (two levels up from this file)
_REPO_ROOT = Path(__file__).resolve().parent.parent.parent  # backend/app/config.py → repo root
_ENV_FILE = _REPO_ROOT / ".env"


class Settings(BaseSettings):
    # ── General ──────────────────────────────────────────────
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # ── Database ─────────────────────────────────────────────
    database_url: str = Field(default="sqlite+aiosqlite:///./opsquery.db")
    auto_create_tables: bool = Field(
        default=True,
        description="Create tables on startup; production deployments manage schema separately",
    )

    # ── CORS / rate limiting ─────────────────────────────────
    cors_origins: str = Field(default="http://localhost:5173,http://localhost:3000")
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_default: str = Field(default="120/minute")

    # ── Approval request priority rules ──────────────────────
    priority_high_amount: float = Field(default=5_000_000)
    priority_medium_amount: float = Field(default=1_000_000)
    urgent_keywords: str = Field(default="urgent,emergency,immediate,asap,critical")

    # ── Activity feed ────────────────────────────────────────
    notification_window_hours: int = Field(default=24)
    recent_activity_limit: int = Field(default=50)

    _is_sqlite: bool = PrivateAttr(default=False)

    def model_post_init(self, __context: object) -> None:
        _scheme = self.database_url.split(":")[0].lower()
        object.__setattr__(self, "_is_sqlite", "sqlite" in _scheme)
        if self.priority_medium_amount > self.priority_high_amount:
            _config_logger.warning(
                "priority_medium_amount (%s) exceeds priority_high_amount (%s)",
                self.priority_medium_amount, self.priority_high_amount,
            )

    @property
    def is_sqlite(self) -> bool:
        return self._is_sqlite

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def urgent_keyword_list(self) -> list[str]:
        return [k.strip().lower() for k in self.urgent_keywords.split(",") if k.strip()]

    model_config = {
        "env_file": str(_ENV_FILE),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
