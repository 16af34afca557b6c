"""
Application settings for the sastabazar payments service

Values are read from the environment (and a local .env file) once per
process. validate_payment_config() runs when the application is created so a
misconfigured gateway fails at startup rather than on the first checkout.
"""

import logging
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_GATEWAYS = ("razorpay", "stripe")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # API Settings
    PROJECT_NAME: str = "sastabazar"
    ENVIRONMENT: str = "development"
    CLIENT_URL: str = "http://localhost:5173"

    # AWS / DynamoDB
    AWS_REGION: str = "ap-south-1"
    DYNAMODB_ENDPOINT: Optional[str] = None
    DYNAMODB_ORDERS_TABLE: str = "sastabazar-orders-dev"
    DYNAMODB_CARTS_TABLE: str = "sastabazar-carts-dev"
    DYNAMODB_PRODUCTS_TABLE: str = "sastabazar-products-dev"

    # JWT
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # Payment gateways
    ENABLED_GATEWAYS: List[str] = ["razorpay"]
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_PUBLISHABLE_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # Pricing
    CURRENCY: str = "INR"
    TAX_RATE: Decimal = Decimal("0.18")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("1000")
    SHIPPING_FEE: Decimal = Decimal("50")

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def gateway_enabled(self, gateway: str) -> bool:
        return gateway in self.ENABLED_GATEWAYS


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def validate_payment_config(settings: Settings) -> None:
    """
    Check gateway credentials and secrets once at startup.

    Raises:
        ConfigurationError: listing every problem found
    """
    issues = []

    unknown = [g for g in settings.ENABLED_GATEWAYS if g not in SUPPORTED_GATEWAYS]
    if unknown:
        issues.append(f"Unknown payment gateways enabled: {', '.join(unknown)}")

    if settings.gateway_enabled("razorpay"):
        if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
            issues.append("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required when razorpay is enabled")
        elif not settings.RAZORPAY_WEBHOOK_SECRET:
            logger.warning(
                "RAZORPAY_WEBHOOK_SECRET not set - webhook signatures will be checked with the key secret"
            )

    if settings.gateway_enabled("stripe"):
        if not settings.STRIPE_SECRET_KEY or not settings.STRIPE_PUBLISHABLE_KEY:
            issues.append("STRIPE_SECRET_KEY and STRIPE_PUBLISHABLE_KEY are required when stripe is enabled")
        if not settings.STRIPE_WEBHOOK_SECRET:
            issues.append("STRIPE_WEBHOOK_SECRET is required when stripe is enabled")

    if not settings.ENABLED_GATEWAYS:
        issues.append("At least one payment gateway must be enabled")

    if settings.is_production and len(settings.JWT_SECRET) < 32:
        issues.append("JWT_SECRET must be at least 32 characters in production")

    if issues:
        for issue in issues:
            logger.critical(f"Configuration error: {issue}")
        raise ConfigurationError(
            "Invalid payment configuration",
            details={"issues": issues},
        )
