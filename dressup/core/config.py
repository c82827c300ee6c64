import logging

from pydantic_settings import BaseSettings
from pydantic import AliasChoices, ConfigDict, Field
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Gemini (image generation / editing)
    GEMINI_API_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY", "GENAI_API_KEY"),
    )
    GEMINI_ENDPOINT: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_EDIT_MODEL: str = "gemini-2.0-flash-exp"
    GEMINI_IMAGE_MODEL: str = "gemini-2.5-flash-image"
    GEMINI_TIMEOUT_SECONDS: float = 60.0
    ECHO_GENERATE: bool = False  # smoke test: /api/generate returns image1 as-is
    FETCH_FILE_TIMEOUT_SECONDS: float = 15.0
    FETCH_FILE_MAX_BYTES: int = 10 * 1024 * 1024

    # Supabase (auth + users table)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("STRIPE_SECRET_KEY", "STRIPE_API_KEY"),
    )
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_LIGHT: Optional[str] = None
    STRIPE_PRICE_BASIC: Optional[str] = None
    STRIPE_PRICE_PRO: Optional[str] = None

    # Per-cycle credit allowances
    CREDITS_FREE: int = 10
    CREDITS_LIGHT: int = 100
    CREDITS_BASIC: int = 500
    CREDITS_PRO: int = 1200

    # App URLs
    PUBLIC_APP_URL: Optional[str] = None
    CORS_ALLOW_ORIGINS: str = "http://localhost:5173"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )
settings = Settings()


def billing_enabled(cfg: Optional[Settings] = None) -> bool:
    """Billing is on when a Stripe secret key is configured."""
    return bool((cfg or settings).STRIPE_SECRET_KEY)


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("dressup")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "GEMINI_API_KEY",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
