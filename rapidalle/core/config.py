import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379/0"

    # Caption generation (Groq)
    GROQ_API_KEY: Optional[str] = None
    CAPTION_MODEL: str = "llama-3.1-8b-instant"
    CAPTION_TEMPERATURE: float = 0.8

    # Image generation (OpenAI)
    OPENAI_API_KEY: Optional[str] = None
    IMAGE_MODEL: str = "dall-e-3"
    IMAGE_MODEL_SMALL: str = "dall-e-2"  # 256x256 / 512x512 only exist on dall-e-2
    IMAGE_QUALITY: str = "standard"
    PROVIDER_TIMEOUT_SECONDS: float = 60.0

    # Media host (Cloudinary); re-hosting is off unless all three are set
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_FOLDER: str = "rapidalle"

    # Credits
    INITIAL_CREDITS: int = 10
    GENERATION_COST: int = 1

    # Rate limiting (fixed window, per user)
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 3600

    # Flat-file cache
    CACHE_DIR: str = "./cache"
    CACHE_ID: str = "library-cache"
    CACHE_TTL_SECONDS: int = 300
    CACHE_PERSIST_INTERVAL_SECONDS: int = 60

    # Task runner (RQ)
    RUN_QUEUE_NAME: str = "generation"
    RUN_MAX_ATTEMPTS: int = 5
    RUN_RETRY_MIN_SECONDS: float = 2.0
    RUN_RETRY_MAX_SECONDS: float = 45.0
    RUN_RETRY_FACTOR: float = 2.0
    RUN_RETRY_RANDOMIZE: bool = True
    RUN_MAX_DURATION_SECONDS: int = 2 * 60 * 60
    RUN_RESULT_TTL_SECONDS: int = 24 * 60 * 60
    RUN_TOKEN_SECRET: Optional[str] = None
    RUN_TOKEN_TTL_SECONDS: int = 3600

    # Auth (sessions are issued by the external auth provider)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_ALLOW_USER_HEADER: bool = True

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_STARTER: Optional[str] = None
    STRIPE_PRICE_POWER: Optional[str] = None
    STRIPE_PRICE_PRO: Optional[str] = None

    # App URLs
    BASE_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:5173"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def media_host_configured(self) -> bool:
        return bool(self.CLOUDINARY_CLOUD_NAME and self.CLOUDINARY_API_KEY and self.CLOUDINARY_API_SECRET)


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("rapidalle")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "GROQ_API_KEY",
        "OPENAI_API_KEY",
        "RUN_TOKEN_SECRET",
        "AUTH_JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
