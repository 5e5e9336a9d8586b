"""
Payment requests and gateway callbacks.

request_payment:
  1. Fetch the transaction (must exist, must be Unpaid)
  2. Reuse an open Pending payment if there is one
  3. Otherwise create a gateway intent for the outstanding balance
  4. Write the payment document → payment state machine (create)

apply_gateway_event:
  Maps an asynchronous gateway event onto a payment status edit. Every event
  except cancellation is written with the edit marker so the payment state
  machine applies exactly one transition for it.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.config import Config
from app.schemas.documents import PaymentDoc, PaymentStatus, TransactionStatus
from app.services import change_feed, store
from app.services.decision import WriteDecision
from app.services.fee import utcnow

logger = logging.getLogger(__name__)


EVENT_STATUS_MAP = {
    "payment_intent.succeeded": PaymentStatus.SUCCESS,
    "payment_intent.processing": PaymentStatus.PROCESS,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELED,
}


class PaymentRequest:
    def __init__(self, tid: str, pid: str, amount: float, client_secret: Optional[str], reused: bool):
        self.tid = tid
        self.pid = pid
        self.amount = amount
        self.client_secret = client_secret
        self.reused = reused


async def request_payment(
    tid: str,
    db: Session,
    paid_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentRequest:
    """
    Open (or reuse) a payment intent for the outstanding balance of `tid`.

    Raises:
        ValueError: if the transaction is not found or cannot take payments
    """
    transaction = store.get_transaction(db, tid)
    if transaction is None:
        raise ValueError(f"Transaction {tid} not found")
    if transaction.status != TransactionStatus.UNPAID:
        status = transaction.status.value if transaction.status else "unprocessed"
        raise ValueError(f"Transaction {tid} is {status}")

    pending = store.pending_payment(db, tid)
    if pending is not None:
        pid, payment = pending
        return PaymentRequest(tid, pid, payment.amount, payment.client_secret, reused=True)

    amount = transaction.fee - transaction.paid
    intent = await change_feed.CLIENTS["gateway"].create_intent(
        amount, Config.CURRENCY, {"tid": tid}
    )

    document = PaymentDoc(
        amount=amount,
        timestamp=now or utcnow(),
        client_secret=intent.get("client_secret"),
        paid_by=paid_by,
    )
    await change_feed.write_payment(db, tid, intent["id"], document, now=now)
    logger.info("Payment %s requested on %s for %s", intent["id"], tid, amount)
    return PaymentRequest(tid, intent["id"], amount, intent.get("client_secret"), reused=False)


async def apply_gateway_event(
    tid: str,
    pid: str,
    event_type: str,
    db: Session,
    reason: Optional[str] = None,
) -> Optional[WriteDecision]:
    """Returns None for events that do not map to a payment status."""
    status = EVENT_STATUS_MAP.get(event_type)
    if status is None:
        logger.info("Ignoring gateway event %s for %s", event_type, pid)
        return None

    if store.get_payment(db, tid, pid) is None:
        raise ValueError(f"Payment {pid} not found on transaction {tid}")

    if status == PaymentStatus.CANCELED:
        return await change_feed.update_payment(db, tid, pid, status=status, reason=reason)
    return await change_feed.update_payment(
        db, tid, pid, status=status, reason=reason, is_edit=True
    )
