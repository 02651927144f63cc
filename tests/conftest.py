import os

# Antes de importar la app: base en memoria y secretos de prueba
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PUBLIC_BASE_URL"] = "https://shop.test"
os.environ["LOG_LEVEL"] = "WARNING"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from fakes import (
    WEBHOOK_SECRET,
    FakePayPal,
    FakeResponse,
    FakeSession,
    FakeStripeGateway,
    FakeWoo,
    sign_stripe_payload,
)
from storefront import deps
from storefront.core.config import settings
from storefront.db import Base, SessionLocal, engine
from storefront.main import app
from storefront.services.freebies import FreebieCompanion
from storefront.services.vat import VatResolver

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def woo():
    return FakeWoo()


@pytest.fixture
def paypal():
    return FakePayPal()


@pytest.fixture
def stripe_gateway():
    return FakeStripeGateway(WEBHOOK_SECRET)


@pytest.fixture
def companion():
    return FreebieCompanion(
        product_id=999,
        name="Functional Foot Workshop",
        price_usd=Decimal("49.00"),
        price_eur=Decimal("49.00"),
    )


@pytest.fixture
def vies():
    """Sesion VIES falsa; cada test fija `vies.handler`."""
    return FakeSession(lambda method, url, kw: FakeResponse(503, {"error": "MS_UNAVAILABLE"}))


@pytest.fixture
def client(woo, paypal, stripe_gateway, vies):
    app.dependency_overrides[deps.get_woo_client] = lambda: woo
    app.dependency_overrides[deps.get_paypal_client] = lambda: paypal
    app.dependency_overrides[deps.get_stripe_gateway] = lambda: stripe_gateway
    app.dependency_overrides[deps.get_vat_resolver] = lambda: VatResolver(
        settings.home_country, "https://vies.test/rest-api", session=vies
    )
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def post_webhook(client):
    def _post(payload: bytes, signature=None):
        headers = {"Content-Type": "application/json"}
        sig = sign_stripe_payload(payload) if signature is None else signature
        if sig:
            headers["stripe-signature"] = sig
        r = client.post("/api/webhooks/stripe", content=payload, headers=headers)
        return r.status_code, r.json()

    return _post
