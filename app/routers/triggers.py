from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.requests import PaymentChange, RateChange, TransactionChange
from app.schemas.responses import DecisionResponse
from app.services import change_feed, rate
from app.services.decision import WriteDecision

router = APIRouter()


def decision_response(document_id: str, decision: WriteDecision) -> DecisionResponse:
    return DecisionResponse(
        document_id=document_id,
        action=decision.action,
        reason=decision.reason,
        notification=decision.notification.kind if decision.notification else None,
        parent_updated=decision.parent is not None,
        adjustment=decision.adjustment.action if decision.adjustment else None,
    )


@router.post("/transactions/{tid}", response_model=DecisionResponse)
async def on_transaction_write(tid: str, change: TransactionChange, db: Session = Depends(get_db)):
    """
    Change-capture delivery for transactions/{tid}.

    Delivered at-least-once; duplicates and the service's own write-backs
    come back as "noop".
    """
    decision = await change_feed.handle_transaction_change(db, tid, change.before, change.after)
    return decision_response(tid, decision)


@router.post("/transactions/{tid}/payments/{pid}", response_model=DecisionResponse)
async def on_payment_write(tid: str, pid: str, change: PaymentChange, db: Session = Depends(get_db)):
    """Change-capture delivery for transactions/{tid}/payments/{pid}."""
    decision = await change_feed.handle_payment_change(db, tid, pid, change.before, change.after)
    return decision_response(pid, decision)


@router.post("/settings/fee")
def on_rate_write(change: RateChange):
    """Write notification for the per-day rate setting."""
    rate.on_rate_change(change.value)
    return {"status": "ok"}
