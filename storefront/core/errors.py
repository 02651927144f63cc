"""
Taxonomia de errores del pipeline de checkout y reconciliacion de pagos.

Cada error lleva un `kind` estable, un status HTTP y un `code` legible por maquina.
`install_error_handlers` los convierte en JSON con la misma forma que usa el resto
de la API: {"detail": code, "kind": kind, "message": message}.
"""
import logging
from enum import Enum
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    AUTHENTICATION = "authentication_error"
    INTEGRITY = "integrity_violation"
    UPSTREAM = "upstream_unavailable"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"


class StorefrontError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = 400
    default_code: str = "ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.UPSTREAM

    def as_dict(self) -> dict:
        return {"detail": self.code, "kind": self.kind.value, "message": self.message}


class ValidationError(StorefrontError):
    kind = ErrorKind.VALIDATION
    status_code = 400
    default_code = "VALIDATION_ERROR"


class AuthenticationError(StorefrontError):
    kind = ErrorKind.AUTHENTICATION
    status_code = 401
    default_code = "AUTHENTICATION_FAILED"


class IntegrityViolation(StorefrontError):
    kind = ErrorKind.INTEGRITY
    status_code = 422
    default_code = "INTEGRITY_VIOLATION"


class UpstreamUnavailable(StorefrontError):
    kind = ErrorKind.UPSTREAM
    status_code = 503
    default_code = "UPSTREAM_UNAVAILABLE"


class PaymentNotCompleted(StorefrontError):
    kind = ErrorKind.PAYMENT_NOT_COMPLETED
    status_code = 402
    default_code = "PAYMENT_NOT_COMPLETED"


async def _storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.retryable:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


def install_error_handlers(app):
    app.add_exception_handler(StorefrontError, _storefront_error_handler)
