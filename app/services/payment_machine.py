"""
Payment state machine.

    Pending ──► Process ──► Success ──► Refund
       │           │           ▲
       │           └──► Failed │
       ├──────────────► Failed │
       └───────────────────────┘

Failed, Refund and Canceled are terminal. Canceled is written by the gateway
when an intent is abandoned and is never processed here.

The owning transaction's `paid` is re-derived from its Success payments every
time a payment enters or leaves Success, and is written in the same commit as
the payment itself.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.schemas.documents import PaymentDoc, PaymentStatus, TransactionDoc
from app.services import store
from app.services.decision import COMMIT, Notification, WriteDecision
from app.services.fee import format_timestamp, transaction_status
from app.services.guard import is_creation_echo, is_fresh_edit

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    (PaymentStatus.PENDING, PaymentStatus.SUCCESS),
    (PaymentStatus.PENDING, PaymentStatus.FAILED),
    (PaymentStatus.PENDING, PaymentStatus.PROCESS),
    (PaymentStatus.PROCESS, PaymentStatus.SUCCESS),
    (PaymentStatus.PROCESS, PaymentStatus.FAILED),
    (PaymentStatus.SUCCESS, PaymentStatus.REFUND),
}

NOTIFY_ACTIONS = {
    PaymentStatus.SUCCESS: "receive",
    PaymentStatus.FAILED: "reject",
    PaymentStatus.REFUND: "refund",
}


def _parent_with_paid(db: Session, tid: str, pid: str, counted_amount: float) -> TransactionDoc:
    """
    The owning transaction with `paid` re-derived: every other Success payment
    plus `counted_amount` for this one (0 when it is not settled).
    """
    transaction = store.get_transaction(db, tid)
    if transaction is None:
        raise ValueError(f"Transaction {tid} not found")
    paid = max(store.settled_total(db, tid, exclude_pid=pid) + counted_amount, 0.0)
    if paid != transaction.paid:
        logger.info("Transaction %s: paid %s -> %s", tid, transaction.paid, paid)
    return transaction.model_copy(update={
        "paid": paid,
        "status": transaction_status(transaction.fee, paid, transaction.is_cancel),
    })


def _notification(
    tid: str,
    payment: PaymentDoc,
    paid_by: Optional[str],
    action: Optional[str] = None,
) -> Optional[Notification]:
    action = action or NOTIFY_ACTIONS.get(payment.status)
    if not paid_by or action is None:
        return None
    return Notification(
        action,
        {
            "amount": payment.amount,
            "timestamp": format_timestamp(payment.timestamp),
            "pid": payment.pid,
            "tid": tid,
        },
        targets=[paid_by],
    )


def _create(tid: str, pid: str, proposed: PaymentDoc, db: Session) -> WriteDecision:
    # A payment recorded already settled (e.g. paid at the counter) counts at once;
    # anything else starts Pending and waits for the gateway.
    settled = proposed.status == PaymentStatus.SUCCESS
    payment = proposed.model_copy(update={
        "pid": pid,
        "status": PaymentStatus.SUCCESS if settled else PaymentStatus.PENDING,
        "is_edit": None,
    })
    parent = _parent_with_paid(db, tid, pid, payment.amount if settled else 0.0)
    logger.info("Payment %s created on %s (%s, %s)", pid, tid, payment.status.value, payment.amount)
    return WriteDecision(
        COMMIT,
        document=payment,
        parent=parent,
        # Every new payment with a payer is acknowledged, settled or not.
        notification=_notification(tid, payment, payment.paid_by, action="receive"),
    )


def _update(tid: str, pid: str, previous: PaymentDoc, proposed: PaymentDoc, db: Session) -> WriteDecision:
    if proposed.status == PaymentStatus.CANCELED:
        return WriteDecision.noop("canceled by gateway")
    if not is_fresh_edit(previous, proposed):
        return WriteDecision.noop("not a fresh edit")

    edge = (previous.status, proposed.status)
    if edge not in ALLOWED_TRANSITIONS:
        logger.info(
            "Payment %s on %s: transition %s -> %s rejected",
            pid, tid, getattr(previous.status, "value", None), getattr(proposed.status, "value", None),
        )
        return WriteDecision.revert(previous, "transition not allowed")

    payment = previous.model_copy(update={
        "status": proposed.status,
        "reason": proposed.reason,
        "is_edit": None,
    })

    parent = None
    if proposed.status == PaymentStatus.SUCCESS:
        parent = _parent_with_paid(db, tid, pid, payment.amount)
    elif edge == (PaymentStatus.SUCCESS, PaymentStatus.REFUND):
        parent = _parent_with_paid(db, tid, pid, 0.0)

    return WriteDecision(
        COMMIT,
        document=payment,
        parent=parent,
        notification=_notification(tid, payment, proposed.paid_by),
    )


def on_payment_change(
    tid: str,
    pid: str,
    previous: Optional[PaymentDoc],
    next: Optional[PaymentDoc],
    db: Session,
) -> WriteDecision:
    """
    Decide how to react to one captured write of transactions/{tid}/payments/{pid}.

    Never raises: an unexpected failure drops the change and is logged.
    """
    try:
        if next is None:
            return WriteDecision.noop("delete ignored")
        if previous is None:
            return _create(tid, pid, next, db)
        if is_creation_echo(previous, next, "pid"):
            return WriteDecision.noop("creation write-back")
        return _update(tid, pid, previous, next, db)
    except Exception:
        logger.exception("Payment %s on %s: processing failed, change dropped", pid, tid)
        return WriteDecision.noop("processing failed")
