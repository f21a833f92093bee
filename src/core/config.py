"""Application configuration management using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-orders", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")
    max_request_body_size: int = Field(default=1_048_576, description="Maximum request body size in bytes")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated proxy IPs whose X-Forwarded-For header is trusted",
    )

    # Public URLs
    domain: str = Field(
        default="http://localhost:3000",
        description="Public base URL of this API, used to build download links",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Storefront URL for success, cancel and error pages",
    )

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_timeout_seconds: float = Field(default=15.0, description="Timeout for Stripe API calls")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Senkisem <orders@senkisem.com>",
        description="From address for transactional emails",
    )
    support_email: str = Field(default="orders@senkisem.com", description="Support address shown in emails")
    email_timeout_seconds: float = Field(default=20.0, description="Timeout for a single email send")

    # Ledger (Google Sheets)
    ledger_backend: str = Field(default="sheets", description="Ledger backend: 'sheets' or 'memory'")
    google_service_account_email: str = Field(default="", description="Service account client email")
    google_private_key: str = Field(default="", description="Service account private key (PEM, \\n escaped)")
    ledger_spreadsheet_id: str = Field(default="", description="Spreadsheet holding the ledger tabs")
    ledger_orders_tab: str = Field(default="Orders", description="Tab holding order rows")
    ledger_downloads_tab: str = Field(default="Download_Links", description="Tab holding download tokens")
    ledger_timeout_seconds: float = Field(default=10.0, description="Timeout for a single ledger call")
    ledger_order_column_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="JSON map of order field name -> column label for this deployment",
    )
    ledger_download_column_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="JSON map of download link field name -> column label for this deployment",
    )

    # Orders and pricing
    currency: str = Field(default="usd", description="Three-letter ISO currency code")
    home_delivery_cost_cents: int = Field(default=1500, ge=0, description="Flat home delivery fee in cents")
    invoice_prefix: str = Field(default="SNK", description="Invoice number prefix")
    catalog_path: Path = Field(
        default=PROJECT_ROOT / "data" / "products.json",
        description="Path to the product catalog JSON file",
    )

    # Digital delivery
    downloads_dir: Path = Field(
        default=PROJECT_ROOT / "ebooks",
        description="Directory holding downloadable product files",
    )
    download_link_expiry_days: int = Field(default=7, ge=1, description="Days a download link stays valid")
    download_rate_limit_requests: int = Field(default=5, description="Download requests allowed per IP per window")
    download_rate_limit_window_seconds: int = Field(default=60, description="Download rate limit window in seconds")

    # Fulfillment
    fulfillment_max_attempts: int = Field(default=3, ge=1, description="Attempts per post-payment job")
    fulfillment_retry_delay_seconds: float = Field(default=5.0, description="Base delay between job attempts")

    # Invoice details
    brand_name: str = Field(default="Senkisem", description="Brand name printed on invoices and emails")
    brand_tagline: str = Field(default="Not a Brand; Message.", description="Brand tagline")
    seller_name: str = Field(default="SENKISEM EV", description="Legal seller name")
    seller_registration: str = Field(default="60502292", description="Seller registration number")
    seller_address: str = Field(
        default="3600 Ózd Bolyki Tamás utca 15. A épület 1. emelet 5-6. ajtó",
        description="Seller postal address",
    )
    seller_tax_number: str = Field(default="91113654-1-25", description="Seller tax number")

    @field_validator("google_private_key")
    @classmethod
    def unescape_private_key(cls, value: str) -> str:
        """Turn literal '\\n' sequences from .env files into newlines."""
        return value.replace("\\n", "\n")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def trusted_proxies_set(self) -> frozenset[str]:
        """Parse trusted proxy IPs into a set."""
        return frozenset(ip.strip() for ip in self.trusted_proxies.split(",") if ip.strip())

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """Check if using Stripe test keys."""
        return self.stripe_secret_key.startswith("sk_test_")

    @property
    def uses_memory_ledger(self) -> bool:
        """Check if the in-memory ledger backend is selected."""
        return self.ledger_backend.lower() == "memory"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
