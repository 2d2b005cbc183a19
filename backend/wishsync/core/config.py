import json
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "WishSync API"
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
            return ["https://web.telegram.org"]
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list):
                    return [str(item).strip() for item in parsed if str(item).strip()]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    # Database: sqlite+aiosqlite:///./wishsync.db (dev) | postgresql+asyncpg://... (prod)
    postgres_dsn: str = "sqlite+aiosqlite:///./wishsync.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_recycle: int = 1800
    db_pool_timeout: int = 30

    # Token issued by @BotFather; signs the Mini App initData
    telegram_bot_token: str = ""
    # 0 disables the auth_date freshness check
    telegram_init_data_max_age_seconds: int = 0

    access_token_expire_minutes: int = 60 * 24 * 7
    # SECURITY: override via JWT_SECRET_KEY env var
    jwt_secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"

    default_wishlist_title: str = "My Wishlist"

    rate_limit_enabled: bool = True
    # Per user per window, for item edits and reservation changes
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60
    rate_limit_login_requests: int = 20

    # Protocol-level WebSocket pings, handed to uvicorn
    ws_ping_interval_seconds: float = 30.0
    ws_ping_timeout_seconds: float = 20.0
    ws_send_timeout_seconds: float = 10.0

    log_level: str = "INFO"
    log_file: str = ""

    def validate_secrets(self) -> None:
        """Refuse to start without the secrets the auth flow depends on."""
        if not self.telegram_bot_token:
            raise RuntimeError(
                "TELEGRAM_BOT_TOKEN is not set. "
                "Mini App initData cannot be validated without the bot token."
            )
        if len(self.jwt_secret_key) < 32:
            raise RuntimeError(
                f"JWT_SECRET_KEY is too short ({len(self.jwt_secret_key)} chars). "
                "Minimum 32 characters required."
            )


settings = Settings()
