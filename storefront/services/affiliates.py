"""
Ledger de comisiones de afiliados: solo append/lectura.

Consume ordenes que acaban de pasar a pagadas; una comision por orden (order_id unico).
"""
import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Numeric, String, func, insert, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..core.money import ZERO, money, to_decimal
from ..models.affiliate import AffiliateCommission, AffiliatePayout

logger = logging.getLogger(__name__)

AFFILIATE_META_KEY = "_affiliate_ref"

_PAYOUT_LOCK = threading.Lock()


def _meta(order: Dict[str, Any], key: str) -> Optional[str]:
    for m in order.get("meta_data") or []:
        if m.get("key") == key and m.get("value") not in (None, ""):
            return str(m["value"])
    return None


class AffiliateLedger:
    def __init__(self, db: Session, commission_rate: Decimal):
        self.db = db
        self.commission_rate = Decimal(str(commission_rate))

    def record_order(self, order: Dict[str, Any]) -> Optional[AffiliateCommission]:
        affiliate_id = _meta(order, AFFILIATE_META_KEY)
        if not affiliate_id:
            return None
        order_id = int(order["id"])
        existing = self.db.query(AffiliateCommission).filter_by(order_id=order_id).first()
        if existing:
            return existing

        total = to_decimal(order.get("total")) or ZERO
        row = AffiliateCommission(
            affiliate_id=affiliate_id,
            order_id=order_id,
            order_total=total,
            commission=money(total * self.commission_rate),
            currency=order.get("currency") or "EUR",
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # Otra peticion registro la misma orden en paralelo
            self.db.rollback()
            return self.db.query(AffiliateCommission).filter_by(order_id=order_id).first()
        logger.info("Commission %s recorded for affiliate %s (order %s)", row.commission, affiliate_id, order_id)
        return row

    def _sum(self, column, *filters) -> Decimal:
        value = self.db.query(func.coalesce(func.sum(column), 0)).filter(*filters).scalar()
        return money(value or 0)

    def _earned(self, affiliate_id: str, currency: str, *filters) -> Decimal:
        return self._sum(
            AffiliateCommission.commission,
            AffiliateCommission.affiliate_id == affiliate_id,
            AffiliateCommission.currency == currency,
            *filters,
        )

    def available_balance(self, affiliate_id: str, currency: str = "EUR") -> Decimal:
        earned = self._earned(affiliate_id, currency)
        requested = self._sum(
            AffiliatePayout.amount,
            AffiliatePayout.affiliate_id == affiliate_id,
            AffiliatePayout.currency == currency,
        )
        return money(earned - requested)

    def dashboard(self, affiliate_id: str, currency: str = "EUR", recent: int = 10) -> Dict[str, Any]:
        q = self.db.query(AffiliateCommission).filter(
            AffiliateCommission.affiliate_id == affiliate_id, AffiliateCommission.currency == currency
        )
        rows = q.order_by(AffiliateCommission.created_at.desc(), AffiliateCommission.id.desc()).limit(recent).all()
        total = self._earned(affiliate_id, currency)
        pending = self._earned(affiliate_id, currency, AffiliateCommission.status == "pending")
        return {
            "affiliateId": affiliate_id,
            "currency": currency,
            "commissionRate": str(self.commission_rate),
            "stats": {
                "totalReferrals": q.count(),
                "totalCommissions": str(total),
                "pendingCommissions": str(pending),
                "paidCommissions": str(money(total - pending)),
                "availableBalance": str(self.available_balance(affiliate_id, currency)),
            },
            "recentReferrals": [
                {
                    "orderId": r.order_id,
                    "amount": str(money(r.order_total)),
                    "commission": str(money(r.commission)),
                    "currency": r.currency,
                    "status": r.status,
                    "date": r.created_at.isoformat() if r.created_at else None,
                }
                for r in rows
            ],
        }

    def _conditional_payout(self, affiliate_id: str, amount: Decimal, currency: str, method: str, paypal_email):
        # INSERT ... SELECT ... WHERE saldo >= monto: chequeo e insercion en una sola sentencia
        earned = (
            select(func.coalesce(func.sum(AffiliateCommission.commission), 0))
            .where(AffiliateCommission.affiliate_id == affiliate_id, AffiliateCommission.currency == currency)
            .scalar_subquery()
        )
        requested = (
            select(func.coalesce(func.sum(AffiliatePayout.amount), 0))
            .where(AffiliatePayout.affiliate_id == affiliate_id, AffiliatePayout.currency == currency)
            .scalar_subquery()
        )
        amount_lit = literal(amount, Numeric(12, 2))
        values = select(
            literal(affiliate_id),
            amount_lit,
            literal(currency),
            literal(method),
            literal(paypal_email, String),
            literal("requested"),
            literal(datetime.utcnow(), DateTime),
        ).where(func.round(earned - requested, 2) >= amount_lit)
        cols = ["affiliate_id", "amount", "currency", "method", "paypal_email", "status", "created_at"]
        return insert(AffiliatePayout).from_select(cols, values)

    def request_payout(
        self,
        affiliate_id: str,
        amount: Decimal,
        method: str,
        paypal_email: Optional[str] = None,
        currency: str = "EUR",
    ) -> AffiliatePayout:
        amount = money(amount)
        if amount <= 0:
            raise ValidationError("Payout amount must be positive", code="INVALID_AMOUNT")
        if method == "paypal" and not paypal_email:
            raise ValidationError("paypalEmail is required for PayPal payouts", code="PAYPAL_EMAIL_REQUIRED")

        # Un pedido a la vez por proceso; la sentencia condicional cubre al resto
        with _PAYOUT_LOCK:
            try:
                inserted = self.db.execute(
                    self._conditional_payout(affiliate_id, amount, currency, method, paypal_email)
                ).rowcount
                if not inserted:
                    available = self.available_balance(affiliate_id, currency)
                    raise ValidationError(
                        f"Requested {amount} {currency} exceeds available balance {available}",
                        code="INSUFFICIENT_BALANCE",
                    )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            row = (
                self.db.query(AffiliatePayout)
                .filter(AffiliatePayout.affiliate_id == affiliate_id)
                .order_by(AffiliatePayout.id.desc())
                .first()
            )
            self.db.commit()
        logger.info("Payout of %s %s requested by affiliate %s via %s", amount, currency, affiliate_id, method)
        return row

    def payouts(self, affiliate_id: str):
        rows = (
            self.db.query(AffiliatePayout)
            .filter(AffiliatePayout.affiliate_id == affiliate_id)
            .order_by(AffiliatePayout.id.desc())
            .all()
        )
        return [
            {
                "id": r.id,
                "amount": str(money(r.amount)),
                "currency": r.currency,
                "method": r.method,
                "status": r.status,
                "date": r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ]
