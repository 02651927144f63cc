from fastapi import FastAPI

from .core.config import settings
from .core.errors import install_error_handlers
from .core.logging import configure_logging
from .db import Base, engine
from .middleware.idempotency import install_idempotency
from .routers import affiliate, cart, checkout, health, payments

# IMPORTA MODELOS antes de create_all
from .models import affiliate as _affiliate_models  # noqa: F401
from .models import cart as _cart_models  # noqa: F401

configure_logging(settings.log_level)

# Crea tablas faltantes (carritos y ledger de afiliados; las ordenes viven en WooCommerce)
Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name, version=settings.app_version)

install_error_handlers(app)
install_idempotency(app)

# Salud
app.include_router(health.router)
app.include_router(cart.router)
app.include_router(checkout.router)
app.include_router(payments.router)
app.include_router(affiliate.router)
