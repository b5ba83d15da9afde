from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Storefront Coupons"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/storefront.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Bearer tokens issued by the storefront auth service
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_HOURS: int = 12

    # Shipping amount waived by free_shipping coupons when the caller
    # does not pass its own shipping quote
    FREE_SHIPPING_AMOUNT: Decimal = Decimal("10.00")

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Rate limiting
    RATE_LIMIT_COUPON_VALIDATIONS_PER_MINUTE: int = 30

    # Let the hourly reconciliation rewrite drifted usage counters
    COUPON_RECONCILE_AUTOFIX: bool = False


settings = Settings()
