"""
Storefront Analytics
Centralized Configuration Management

Pydantic settings for the database, the storefront sources, the pipeline
and logging, loaded from environment variables and an optional .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront_analytics.errors import ConfigurationError


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="DB_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="ecommerce_analytics", description="Database name")
    user: Optional[str] = Field(default=None, description="Database user")
    password: Optional[SecretStr] = Field(default=None, description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, description="Full SQLAlchemy URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        password = self.password.get_secret_value() if self.password else ""
        return f"postgresql+asyncpg://{self.user}:{password}@{self.host}:{self.port}/{self.name}"


class ShopifySettings(BaseSettings):
    """Shopify Source Configuration"""

    model_config = SettingsConfigDict(env_prefix="SHOPIFY_")

    enabled: bool = Field(default=False, description="Extract from Shopify")
    store_url: Optional[str] = Field(default=None, description="Shop URL")
    access_token: Optional[SecretStr] = Field(default=None, description="Admin API access token")

    def missing(self) -> List[str]:
        errors = []
        if not self.store_url:
            errors.append("SHOPIFY_STORE_URL is required when Shopify is enabled")
        if not self.access_token:
            errors.append("SHOPIFY_ACCESS_TOKEN is required when Shopify is enabled")
        return errors


class WooCommerceSettings(BaseSettings):
    """WooCommerce Source Configuration"""

    model_config = SettingsConfigDict(env_prefix="WOOCOMMERCE_")

    enabled: bool = Field(default=False, description="Extract from WooCommerce")
    url: Optional[str] = Field(default=None, description="Store URL")
    consumer_key: Optional[SecretStr] = Field(default=None, description="REST API consumer key")
    consumer_secret: Optional[SecretStr] = Field(default=None, description="REST API consumer secret")

    def missing(self) -> List[str]:
        errors = []
        if not self.url:
            errors.append("WOOCOMMERCE_URL is required when WooCommerce is enabled")
        if not self.consumer_key:
            errors.append("WOOCOMMERCE_CONSUMER_KEY is required when WooCommerce is enabled")
        if not self.consumer_secret:
            errors.append("WOOCOMMERCE_CONSUMER_SECRET is required when WooCommerce is enabled")
        return errors


class CommercetoolsSettings(BaseSettings):
    """Commercetools Source Configuration"""

    model_config = SettingsConfigDict(env_prefix="COMMERCETOOLS_")

    enabled: bool = Field(default=False, description="Extract from Commercetools")
    project_key: Optional[str] = Field(default=None, description="Project key")
    client_id: Optional[str] = Field(default=None, description="API client id")
    client_secret: Optional[SecretStr] = Field(default=None, description="API client secret")
    region: str = Field(default="us-central1", description="Platform region")

    def missing(self) -> List[str]:
        errors = []
        if not self.project_key:
            errors.append("COMMERCETOOLS_PROJECT_KEY is required when Commercetools is enabled")
        if not self.client_id:
            errors.append("COMMERCETOOLS_CLIENT_ID is required when Commercetools is enabled")
        if not self.client_secret:
            errors.append("COMMERCETOOLS_CLIENT_SECRET is required when Commercetools is enabled")
        return errors


class PipelineSettings(BaseSettings):
    """ETL Pipeline Configuration"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    name: str = Field(default="main_etl", description="Pipeline name used for run logs and watermarks")
    schedule_cron: str = Field(default="0 2 * * *", description="Cron schedule for recurring runs")
    top_products_limit: int = Field(default=10, ge=1, description="Top selling products kept per day")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("json", "text"):
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    shopify: ShopifySettings = Field(default_factory=ShopifySettings)
    woocommerce: WooCommerceSettings = Field(default_factory=WooCommerceSettings)
    commercetools: CommercetoolsSettings = Field(default_factory=CommercetoolsSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def sources(self) -> dict:
        """Source settings keyed by source type, in extraction order"""
        return {
            "shopify": self.shopify,
            "woocommerce": self.woocommerce,
            "commercetools": self.commercetools,
        }

    @property
    def enabled_sources(self) -> List[str]:
        return [name for name, source in self.sources.items() if source.enabled]

    def validate_sources(self) -> None:
        """
        Check that the enabled sources are usable.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors: List[str] = []
        for source in self.sources.values():
            if source.enabled:
                errors.extend(source.missing())

        if not self.enabled_sources:
            errors.append(
                "At least one data source (Shopify, WooCommerce, or Commercetools) must be enabled"
            )

        if not self.database.url:
            if not self.database.user:
                errors.append("DB_USER is required")
            if not self.database.password:
                errors.append("DB_PASSWORD is required")

        if errors:
            raise ConfigurationError(errors)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
