import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Identity provider session tokens
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_AUDIENCE: Optional[str] = None  # e.g. "authenticated"
    ALLOW_USER_ID_HEADER: bool = True  # X-User-Id fallback, never in production

    # Razorpay
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_API_BASE: str = "https://api.razorpay.com/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0

    # Workflow-automation webhooks
    GENERATE_WEBHOOK_URL: Optional[str] = None
    PUBLISH_WEBHOOK_URL: Optional[str] = None
    PUBLISH_WEBHOOK_SECRET: Optional[str] = None
    PUBLISH_TIMEOUT_SECONDS: float = 60.0

    # Credits
    FREE_SIGNUP_CREDITS: int = 5

    # Sweeps
    STUCK_GENERATING_MINUTES: int = 15
    SCHEDULED_SWEEP_LIMIT: int = 10
    CRON_SECRET: Optional[str] = None

    CORS_ORIGINS: str = "http://localhost:8080"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("voicepost")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
        "RAZORPAY_KEY_ID",
        "RAZORPAY_KEY_SECRET",
        "PUBLISH_WEBHOOK_URL",
        "GENERATE_WEBHOOK_URL",
        "CRON_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True


def cors_origins(settings_obj: Optional[Settings] = None) -> list[str]:
    cfg = settings_obj or settings
    return [origin.strip() for origin in (cfg.CORS_ORIGINS or "").split(",") if origin.strip()]
