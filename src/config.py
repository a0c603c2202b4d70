"""
Configuration settings for the application.
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Redis settings
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CART_KEY_PREFIX: str = os.getenv("CART_KEY_PREFIX", "cart:")
    CART_CHANNEL_PREFIX: str = os.getenv("CART_CHANNEL_PREFIX", "cart-updated:")
    CART_TTL_SECONDS: int = int(os.getenv("CART_TTL_SECONDS", str(30 * 24 * 3600)))
    CHECKOUT_SNAPSHOT_PREFIX: str = os.getenv(
        "CHECKOUT_SNAPSHOT_PREFIX",
        "checkout:pending:",
    )
    CHECKOUT_FINGERPRINT_PREFIX: str = os.getenv(
        "CHECKOUT_FINGERPRINT_PREFIX",
        "checkout:fingerprint:",
    )
    # Must outlive the provider-side session (24h) plus the retry window
    CHECKOUT_SNAPSHOT_TTL_SECONDS: int = int(
        os.getenv("CHECKOUT_SNAPSHOT_TTL_SECONDS", str(7 * 24 * 3600))
    )
    ADDRESS_RESOLUTION_PREFIX: str = os.getenv(
        "ADDRESS_RESOLUTION_PREFIX",
        "address:resolved:",
    )
    ADDRESS_RESOLUTION_TTL_SECONDS: int = int(
        os.getenv("ADDRESS_RESOLUTION_TTL_SECONDS", str(24 * 3600))
    )
    ORDER_INDEX_PREFIX: str = os.getenv("ORDER_INDEX_PREFIX", "order:session:")
    ORDER_LOCK_PREFIX: str = os.getenv("ORDER_LOCK_PREFIX", "order:lock:")
    ORDER_LOCK_TTL_SECONDS: int = int(os.getenv("ORDER_LOCK_TTL_SECONDS", "30"))
    ORDER_LOCK_WAIT_SECONDS: float = float(os.getenv("ORDER_LOCK_WAIT_SECONDS", "3"))
    ORDER_RETRY_STREAM_KEY: str = os.getenv("ORDER_RETRY_STREAM_KEY", "orders:retry")
    ORDER_RETRY_CONSUMER_GROUP: str = os.getenv(
        "ORDER_RETRY_CONSUMER_GROUP",
        "orders-replayers",
    )
    ORDER_RETRY_CONSUMER_NAME: str = os.getenv("ORDER_RETRY_CONSUMER_NAME", "replayer")
    ORDER_RETRY_BATCH_SIZE: int = int(os.getenv("ORDER_RETRY_BATCH_SIZE", "20"))

    # Stripe settings
    STRIPE_SECRET_KEY: str | None = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_CURRENCY: str = os.getenv("STRIPE_CURRENCY", "eur")
    STRIPE_ALLOWED_COUNTRIES: list[str] = [
        country.strip()
        for country in os.getenv("STRIPE_ALLOWED_COUNTRIES", "FR").split(",")
        if country.strip()
    ]
    STRIPE_TIMEOUT_SECONDS: float = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "20"))
    STRIPE_MAX_NETWORK_RETRIES: int = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))
    SHIPPING_DISPLAY_NAME: str = os.getenv(
        "SHIPPING_DISPLAY_NAME",
        "Livraison standard",
    )

    # Content backend (Strapi) settings
    CONTENT_BACKEND_URL: str = os.getenv("CONTENT_BACKEND_URL", "http://localhost:1338")
    CONTENT_BACKEND_TOKEN: str | None = os.getenv("CONTENT_BACKEND_TOKEN")
    CONTENT_BACKEND_TIMEOUT_SECONDS: float = float(
        os.getenv("CONTENT_BACKEND_TIMEOUT_SECONDS", "10")
    )
    MEDIA_BASE_URL: str | None = os.getenv("MEDIA_BASE_URL")

    # Geocoding settings
    GEOCODER_URL: str = os.getenv(
        "GEOCODER_URL",
        "https://nominatim.openstreetmap.org/search",
    )
    GEOCODER_USER_AGENT: str = os.getenv(
        "GEOCODER_USER_AGENT",
        "ArtisanStorefrontCheckout/1.0 (contact@example.com)",
    )
    GEOCODER_TIMEOUT_SECONDS: float = float(os.getenv("GEOCODER_TIMEOUT_SECONDS", "10"))
    GEOCODER_MIN_INTERVAL_SECONDS: float = float(
        os.getenv("GEOCODER_MIN_INTERVAL_SECONDS", "1.0")
    )
    GEOCODER_CANDIDATES: int = int(os.getenv("GEOCODER_CANDIDATES", "5"))

    @property
    def is_production(self) -> bool:
        """
        Check if running in production environment.
        """
        return self.ENVIRONMENT.lower() == "production"

    @property
    def payments_enabled(self) -> bool:
        """Return True when a Stripe client can be initialized."""
        return bool(self.STRIPE_SECRET_KEY)

    @property
    def content_backend_configured(self) -> bool:
        """Indicates whether a bearer credential for the content backend is set."""
        return bool(self.CONTENT_BACKEND_TOKEN)

    def __init__(self):
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        logging.basicConfig(level=self.log_level)
        logging.getLogger(__name__).debug(
            "Config initialized for %s with log_level=%s", self.ENVIRONMENT, self.log_level
        )


# Create a global settings instance for import
settings = Settings()
