from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends

from ..core.money import money
from ..core.schemas import ApiModel, Currency
from ..deps import Identity, get_ledger, require_identity
from ..services.affiliates import AffiliateLedger

router = APIRouter(prefix="/api/affiliate", tags=["affiliate"])


class PayoutRequest(ApiModel):
    amount: Decimal
    method: Literal["paypal", "bank_transfer"] = "paypal"
    paypal_email: Optional[str] = None
    currency: Currency = "EUR"


@router.get("/dashboard")
def dashboard(
    currency: Currency = "EUR",
    identity: Identity = Depends(require_identity),
    ledger: AffiliateLedger = Depends(get_ledger),
):
    return ledger.dashboard(identity.user_id, currency)


@router.get("/payouts")
def payouts(
    identity: Identity = Depends(require_identity),
    ledger: AffiliateLedger = Depends(get_ledger),
):
    return {"payouts": ledger.payouts(identity.user_id)}


@router.post("/payout")
def request_payout(
    req: PayoutRequest = Body(...),
    identity: Identity = Depends(require_identity),
    ledger: AffiliateLedger = Depends(get_ledger),
):
    row = ledger.request_payout(
        identity.user_id, req.amount, req.method, req.paypal_email, currency=req.currency
    )
    return {
        "success": True,
        "payoutId": row.id,
        "amount": str(money(row.amount)),
        "currency": row.currency,
        "status": row.status,
        "availableBalance": str(ledger.available_balance(identity.user_id, req.currency)),
    }
