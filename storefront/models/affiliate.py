from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from ..db import Base


class AffiliateCommission(Base):
    __tablename__ = "affiliate_commission"
    id = Column(Integer, primary_key=True)
    affiliate_id = Column(String, index=True, nullable=False)
    order_id = Column(Integer, unique=True, nullable=False)  # una comision por orden
    order_total = Column(Numeric(12, 2), nullable=False)
    commission = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, default="EUR")
    status = Column(String, default="pending")  # pending | paid
    created_at = Column(DateTime, default=datetime.utcnow)


class AffiliatePayout(Base):
    __tablename__ = "affiliate_payout"
    id = Column(Integer, primary_key=True)
    affiliate_id = Column(String, index=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="EUR")
    method = Column(String, nullable=False)  # paypal | bank_transfer
    paypal_email = Column(String)
    status = Column(String, default="requested")
    created_at = Column(DateTime, default=datetime.utcnow)
