"""
Reconciliacion de pagos: una sola maquina de estados para las tres fuentes de senal
(webhook de Stripe, redirect de captura de PayPal, confirmacion manual).

Cada senal se resuelve primero a una Transition (order_id, transaction_id, metadata);
toda validacion/firma/captura falla ANTES de escribir. Luego, para las tres:

1) leer la orden en WooCommerce (read-before-write)
2) si ya esta en estado terminal -> no-op exitoso (entrega duplicada, refresh, carrera)
3) PUT status/set_paid/transaction_id/date_paid + metadata del metodo
4) nota de auditoria y ledger de afiliados: fallan sin romper la transicion

No hay lock ni log de eventos: WooCommerce es la unica fuente de verdad y serializa
sus escrituras; dos escritores en carrera aplican el mismo estado final.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.errors import IntegrityViolation, PaymentNotCompleted, StorefrontError, ValidationError
from .orders import METHOD_TITLES
from .paypal import capture_details

logger = logging.getLogger(__name__)

PAID_STATUSES = {"processing", "completed"}
TERMINAL_STATUSES = PAID_STATUSES | {"cancelled", "refunded"}

STRIPE_PAID_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


# === Senales de pago ===
@dataclass(frozen=True)
class StripeWebhookEvent:
    type: str
    session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    order_id_meta: Optional[str] = None
    payment_status: Optional[str] = None
    event_id: Optional[str] = None

    @classmethod
    def from_payload(cls, event: Dict[str, Any]) -> "StripeWebhookEvent":
        obj = (event.get("data") or {}).get("object") or {}
        meta = obj.get("metadata") or {}
        intent = obj.get("payment_intent")
        if isinstance(intent, dict):
            intent = intent.get("id")
        return cls(
            type=str(event.get("type") or ""),
            session_id=obj.get("id"),
            payment_intent_id=intent,
            order_id_meta=meta.get("order_id") or meta.get("woocommerce_order_id"),
            payment_status=obj.get("payment_status"),
            event_id=event.get("id"),
        )


@dataclass(frozen=True)
class PaypalCaptureRedirect:
    paypal_order_token: str


@dataclass(frozen=True)
class ManualConfirm:
    order_id: int
    transaction_id: str
    method: str
    amount: Optional[Decimal] = None
    currency: str = "EUR"
    status: str = "completed"


PaymentEvent = Union[StripeWebhookEvent, PaypalCaptureRedirect, ManualConfirm]


@dataclass(frozen=True)
class Transition:
    order_id: int
    transaction_id: str
    source: str
    target_status: str
    set_paid: bool
    note: str
    meta_data: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)


class Outcome(str, Enum):
    UPDATED = "updated"
    ALREADY_TERMINAL = "already_terminal"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"


@dataclass
class ReconcileResult:
    outcome: Outcome
    source: str
    order_id: Optional[int] = None
    status: Optional[str] = None
    transaction_id: Optional[str] = None
    provider_ref: Optional[str] = None
    order: Dict[str, Any] = field(default_factory=dict)


def _order_id(value, source: str) -> int:
    try:
        oid = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{source}: invalid order id {value!r}", code="INVALID_ORDER_ID") from None
    if oid <= 0:
        raise ValidationError(f"{source}: invalid order id {value!r}", code="INVALID_ORDER_ID")
    return oid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentReconciler:
    def __init__(self, woo, paypal=None, ledger=None, clock: Callable[[], datetime] = _utcnow):
        self.woo = woo
        self.paypal = paypal
        self.ledger = ledger
        self.clock = clock

    def reconcile(self, event: PaymentEvent) -> ReconcileResult:
        if isinstance(event, StripeWebhookEvent):
            transition = self._from_stripe(event)
            source, ref = "stripe", event.session_id
        elif isinstance(event, PaypalCaptureRedirect):
            transition = self._from_paypal(event)
            source, ref = "paypal", event.paypal_order_token
        elif isinstance(event, ManualConfirm):
            transition = self._from_manual(event)
            source, ref = "manual", event.transaction_id
        else:
            raise ValidationError(f"Unsupported payment event {type(event).__name__}", code="UNSUPPORTED_EVENT")

        if transition is None:
            return ReconcileResult(outcome=Outcome.IGNORED, source=source, provider_ref=ref)
        result = self._apply(transition)
        result.provider_ref = ref
        return result

    # === Resolucion de cada fuente (sin escrituras) ===
    def _from_stripe(self, event: StripeWebhookEvent) -> Optional[Transition]:
        if event.type not in STRIPE_PAID_EVENTS:
            logger.info("Stripe event %s (%s) ignored", event.type, event.event_id)
            return None
        if event.payment_status == "unpaid":
            # Metodo asincrono: el pago llega luego con async_payment_succeeded
            logger.info("Stripe session %s completed but unpaid; waiting for async payment", event.session_id)
            return None
        if not event.order_id_meta:
            raise ValidationError("No order ID in session metadata", code="NO_ORDER_ID")
        order_id = _order_id(event.order_id_meta, "stripe")
        txn = event.payment_intent_id or event.session_id
        if not txn:
            raise ValidationError("Stripe session has no payment reference", code="NO_TRANSACTION_ID")
        return Transition(
            order_id=order_id,
            transaction_id=txn,
            source="stripe",
            target_status="processing",
            set_paid=True,
            note=f"Stripe payment completed. Session ID: {event.session_id}, Payment Intent: {event.payment_intent_id}",
            meta_data=[
                {"key": "_stripe_charge_id", "value": txn},
                {"key": "_stripe_session_id", "value": event.session_id or ""},
            ],
        )

    def _from_paypal(self, event: PaypalCaptureRedirect) -> Transition:
        token = (event.paypal_order_token or "").strip()
        if not token:
            raise ValidationError("No PayPal order ID provided", code="NO_PAYPAL_TOKEN")
        if self.paypal is None:
            raise ValidationError("PayPal is not configured", code="PAYPAL_NOT_CONFIGURED")

        capture = self.paypal.capture_order(token)
        status, custom_id, capture_id = capture_details(capture)
        if status != "COMPLETED":
            raise PaymentNotCompleted(f"Payment not completed. Status: {status or 'unknown'}")
        if not custom_id:
            raise IntegrityViolation(
                f"PayPal order {token} carries no store order id", code="NO_ORDER_ID"
            )
        order_id = _order_id(custom_id, "paypal")
        txn = capture_id or token
        return Transition(
            order_id=order_id,
            transaction_id=txn,
            source="paypal",
            target_status="processing",
            set_paid=True,
            note=f"PayPal payment completed. Order ID: {token}, Transaction ID: {txn}",
            meta_data=[
                {"key": "_paypal_transaction_id", "value": txn},
                {"key": "_paypal_order_id", "value": token},
                {"key": "_paypal_status", "value": "completed"},
            ],
        )

    def _from_manual(self, event: ManualConfirm) -> Transition:
        if not (event.transaction_id or "").strip():
            raise ValidationError("transactionId is required", code="NO_TRANSACTION_ID")
        completed = event.status == "completed"
        now = self.clock().isoformat()
        method = event.method
        amount = "" if event.amount is None else str(event.amount)
        return Transition(
            order_id=_order_id(event.order_id, "manual"),
            transaction_id=event.transaction_id.strip(),
            source="manual",
            target_status="processing" if completed else "on-hold",
            set_paid=completed,
            note=(
                f"Payment {event.status} via {method}. Transaction ID: {event.transaction_id}. "
                f"Amount: {event.currency} {amount}"
            ),
            meta_data=[
                {"key": "_stripe_charge_id", "value": event.transaction_id if method == "stripe" else ""},
                {"key": "_paypal_transaction_id", "value": event.transaction_id if method == "paypal" else ""},
                {"key": "_payment_method", "value": method},
                {"key": "_paid_amount", "value": amount},
                {"key": "_paid_currency", "value": event.currency},
                {"key": "_payment_completed_at", "value": now},
                {"key": "_manual_confirmation", "value": "yes"},
            ],
            extra={"payment_method": method},
        )

    # === Transicion comun ===
    def _apply(self, t: Transition) -> ReconcileResult:
        # 1) Leer antes de escribir
        order = self.woo.get_order(t.order_id)
        current = str(order.get("status") or "")

        # 2) Estado terminal: no-op exitoso
        if current in TERMINAL_STATUSES:
            if current in PAID_STATUSES:
                logger.info(
                    "Order %s already %s (txn %s); %s signal %s is a no-op",
                    t.order_id, current, order.get("transaction_id"), t.source, t.transaction_id,
                )
            else:
                logger.warning(
                    "Payment signal from %s (txn %s) for order %s in status %s; needs manual review",
                    t.source, t.transaction_id, t.order_id, current,
                )
            return ReconcileResult(
                outcome=Outcome.ALREADY_TERMINAL,
                source=t.source,
                order_id=t.order_id,
                status=current,
                transaction_id=order.get("transaction_id") or None,
                order=order,
            )
        if current == t.target_status and not t.set_paid:
            return ReconcileResult(
                outcome=Outcome.UNCHANGED,
                source=t.source,
                order_id=t.order_id,
                status=current,
                transaction_id=order.get("transaction_id") or None,
                order=order,
            )

        # 3) Escritura; si falla se propaga (el proveedor reintenta)
        data: Dict[str, Any] = {
            "status": t.target_status,
            "transaction_id": t.transaction_id,
            "meta_data": t.meta_data,
        }
        if t.set_paid:
            paid_at = self.clock().astimezone(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds")
            data["set_paid"] = True
            data["date_paid"] = paid_at
            data["date_paid_gmt"] = paid_at
        method = t.extra.get("payment_method")
        if method:
            data["payment_method"] = method
            data["payment_method_title"] = METHOD_TITLES.get(method, "Manual")
        updated = self.woo.update_order(t.order_id, data)
        logger.info(
            "Order %s: %s -> %s via %s (txn %s)", t.order_id, current, t.target_status, t.source, t.transaction_id
        )

        # 4) Efectos secundarios no esenciales
        try:
            self.woo.add_order_note(t.order_id, t.note)
        except StorefrontError as e:
            logger.warning("Audit note for order %s failed: %s", t.order_id, e.message)

        if t.set_paid and self.ledger is not None:
            try:
                self.ledger.record_order(updated or order)
            except Exception:
                logger.exception("Affiliate ledger update failed for order %s", t.order_id)

        return ReconcileResult(
            outcome=Outcome.UPDATED,
            source=t.source,
            order_id=t.order_id,
            status=str((updated or {}).get("status") or t.target_status),
            transaction_id=t.transaction_id,
            order=updated or {},
        )
