from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    SERVICE_NAME: str = "orders-service"
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    # Overrides the POSTGRES_* settings when set (tests use sqlite)
    DATABASE_URL: Optional[str] = None

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    SESSION_SECRET: str = "change-me-too"
    ADMIN_SESSION_COOKIE: str = "admin_session"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    CURRENCY: str = "gbp"

    SENDGRID_API_KEY: str = ""
    SENDGRID_API_BASE: str = "https://api.sendgrid.com/v3"
    EMAIL_FROM: str = "orders@uwearuk.com"
    MAIL_TIMEOUT_SECONDS: float = 10.0

    ACCEPTED_PAYMENT_METHOD: str = "Card"
    SHIPPING_METHOD: str = "RoyalMail_NonTrackable"
    SHIPPING_PRICE: Decimal = Decimal("2.99")
    CHECKOUT_SUCCESS_URL: str = "http://localhost:3000/order-confirmation"
    CHECKOUT_CANCEL_URL: str = "http://localhost:3003/checkout"
    STORE_URL: str = "https://uwearuk.com"

    ARCHIVE_RETENTION_MONTHS: int = 1
    ARCHIVE_LOCK_TTL_SECONDS: int = 3600

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
