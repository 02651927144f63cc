"""Dependencias FastAPI: configuracion, identidad y clientes externos."""
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .core.config import Settings, get_settings
from .core.errors import AuthenticationError
from .db import get_db
from .services.affiliates import AffiliateLedger
from .services.catalog import Catalog
from .services.coupons import CouponValidator
from .services.freebies import FreebieCompanion, companion_from_settings
from .services.orders import OrderIntake
from .services.paypal import PayPalClient
from .services.reconciler import PaymentReconciler
from .services.stripe_gateway import StripeGateway
from .services.vat import VatResolver
from .services.woo_client import WooClient


@dataclass(frozen=True)
class Identity:
    user_id: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_reseller(self) -> bool:
        return (self.role or "").lower() == "reseller"

    @property
    def customer_id(self) -> Optional[int]:
        try:
            return int(self.user_id) if self.user_id else None
        except ValueError:
            return None


def get_identity(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id", convert_underscores=False),
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role", convert_underscores=False),
) -> Identity:
    return Identity(user_id=x_user_id or None, role=x_user_role or None)


def require_identity(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.user_id:
        raise AuthenticationError("Unauthorized", code="UNAUTHORIZED")
    return identity


def require_admin(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token", convert_underscores=False),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.admin_token
    if not expected or not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise AuthenticationError("Administrative token required", code="ADMIN_REQUIRED")


def get_woo_client(settings: Settings = Depends(get_settings)) -> WooClient:
    return WooClient(
        settings.woo_base_url,
        settings.woo_consumer_key,
        settings.woo_consumer_secret,
        timeout=settings.woo_timeout,
    )


def get_paypal_client(settings: Settings = Depends(get_settings)) -> PayPalClient:
    return PayPalClient(
        settings.paypal_api_url,
        settings.paypal_client_id,
        settings.paypal_secret,
        timeout=settings.paypal_timeout,
    )


def get_stripe_gateway(settings: Settings = Depends(get_settings)) -> StripeGateway:
    return StripeGateway(
        settings.stripe_secret_key,
        settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance,
    )


def get_vat_resolver(settings: Settings = Depends(get_settings)) -> VatResolver:
    return VatResolver(settings.home_country, settings.vies_base_url, timeout=settings.vies_timeout)


def get_companion(settings: Settings = Depends(get_settings)) -> FreebieCompanion:
    return companion_from_settings(settings)


def get_catalog(
    woo: WooClient = Depends(get_woo_client), settings: Settings = Depends(get_settings)
) -> Catalog:
    return Catalog(woo, settings.store_currency)


def get_coupon_validator(woo: WooClient = Depends(get_woo_client)) -> CouponValidator:
    return CouponValidator(woo)


def get_ledger(
    db: Session = Depends(get_db), settings: Settings = Depends(get_settings)
) -> AffiliateLedger:
    return AffiliateLedger(db, settings.affiliate_commission_rate)


def get_order_intake(
    woo: WooClient = Depends(get_woo_client),
    stripe: StripeGateway = Depends(get_stripe_gateway),
    paypal: PayPalClient = Depends(get_paypal_client),
    settings: Settings = Depends(get_settings),
) -> OrderIntake:
    return OrderIntake(woo, settings, stripe=stripe, paypal=paypal)


def get_reconciler(
    woo: WooClient = Depends(get_woo_client),
    paypal: PayPalClient = Depends(get_paypal_client),
    ledger: AffiliateLedger = Depends(get_ledger),
) -> PaymentReconciler:
    return PaymentReconciler(woo, paypal=paypal, ledger=ledger)
