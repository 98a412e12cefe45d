from pydantic_settings import BaseSettings
from typing import Optional
import os


class Settings(BaseSettings):
    # Environment configuration
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Database configuration (postgresql+asyncpg in production, sqlite+aiosqlite locally)
    database_url: Optional[str] = os.getenv("DATABASE_URL", "")
    database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Frontend URL (for CORS and checkout/portal redirects)
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # JWT configuration (tokens are issued by the external identity provider)
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-this")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Stripe configuration
    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    stripe_webhook_tolerance: int = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))

    # Subscription plan prices
    stripe_price_pro_monthly: str = os.getenv("STRIPE_PRICE_PRO_MONTHLY", "")
    stripe_price_pro_yearly: str = os.getenv("STRIPE_PRICE_PRO_YEARLY", "")
    stripe_price_lifetime: str = os.getenv("STRIPE_PRICE_LIFETIME", "")

    # Credit package prices
    stripe_price_credits_basic: str = os.getenv("STRIPE_PRICE_CREDITS_BASIC", "")
    stripe_price_credits_standard: str = os.getenv("STRIPE_PRICE_CREDITS_STANDARD", "")
    stripe_price_credits_premium: str = os.getenv("STRIPE_PRICE_CREDITS_PREMIUM", "")
    stripe_price_credits_enterprise: str = os.getenv("STRIPE_PRICE_CREDITS_ENTERPRISE", "")

    # Credits
    credits_enabled: bool = os.getenv("CREDITS_ENABLED", "true").lower() == "true"

    # Admin settings cache
    settings_cache_ttl_seconds: int = int(os.getenv("SETTINGS_CACHE_TTL_SECONDS", "300"))
    notification_timeout: float = float(os.getenv("NOTIFICATION_TIMEOUT", "10"))

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
