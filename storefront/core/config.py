from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = Field(default="Storefront Checkout", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    database_url: str = Field(default="sqlite:///./storefront.db", alias="DATABASE_URL")

    # WooCommerce (sistema de registro de ordenes)
    woo_base_url: str = Field(default="", alias="WP_BASE_URL")
    woo_consumer_key: str = Field(default="", alias="WOO_CONSUMER_KEY")
    woo_consumer_secret: str = Field(default="", alias="WOO_CONSUMER_SECRET")
    woo_timeout: float = Field(default=15.0, alias="WOO_TIMEOUT")

    # Pasarelas
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE")
    paypal_mode: str = Field(default="sandbox", alias="PAYPAL_MODE")
    paypal_client_id: str = Field(default="", alias="PAYPAL_CLIENT_ID")
    paypal_secret: str = Field(default="", alias="PAYPAL_SECRET")
    paypal_timeout: float = Field(default=15.0, alias="PAYPAL_TIMEOUT")
    public_base_url: str = Field(default="http://localhost:3000", alias="PUBLIC_BASE_URL")
    brand_name: str = Field(default="BlackBoard Training", alias="BRAND_NAME")
    # Moneda del campo `price` de WooCommerce (los precios por moneda van en meta)
    store_currency: str = Field(default="EUR", alias="STORE_CURRENCY")

    # Confirmacion manual (admin)
    admin_token: Optional[str] = Field(default=None, alias="ADMIN_TOKEN")

    # IVA
    home_country: str = Field(default="DE", alias="HOME_COUNTRY")
    vies_base_url: str = Field(
        default="https://ec.europa.eu/taxation_customs/vies/rest-api", alias="VIES_BASE_URL"
    )
    vies_timeout: float = Field(default=10.0, alias="VIES_TIMEOUT")

    # Regalo (freebie) de los bundles flagship
    freebie_product_id: int = Field(default=999, alias="FREEBIE_PRODUCT_ID")
    freebie_name: str = Field(default="Functional Foot Workshop", alias="FREEBIE_NAME")
    freebie_price_usd: Decimal = Field(default=Decimal("49.00"), alias="FREEBIE_PRICE_USD")
    freebie_price_eur: Decimal = Field(default=Decimal("49.00"), alias="FREEBIE_PRICE_EUR")

    # Envio (tarifa plana por zona)
    shipping_home_usd: Decimal = Field(default=Decimal("6.90"), alias="SHIPPING_HOME_USD")
    shipping_home_eur: Decimal = Field(default=Decimal("5.90"), alias="SHIPPING_HOME_EUR")
    shipping_eu_usd: Decimal = Field(default=Decimal("14.90"), alias="SHIPPING_EU_USD")
    shipping_eu_eur: Decimal = Field(default=Decimal("12.90"), alias="SHIPPING_EU_EUR")
    shipping_world_usd: Decimal = Field(default=Decimal("29.90"), alias="SHIPPING_WORLD_USD")
    shipping_world_eur: Decimal = Field(default=Decimal("27.90"), alias="SHIPPING_WORLD_EUR")

    affiliate_commission_rate: Decimal = Field(
        default=Decimal("0.30"), alias="AFFILIATE_COMMISSION_RATE"
    )

    class Config:
        env_file = ".env"
        populate_by_name = True

    @property
    def paypal_api_url(self) -> str:
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
