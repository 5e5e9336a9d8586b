"""
Change feed: routes captured document writes through the state machines.

Every write made here is handed back to the matching state machine as a
(before, after) pair, exactly like a write coming from outside. The state
machine's own write-backs therefore re-enter once and are turned into no-ops
by the idempotency marker protocol.

Per write:
1. Run the state machine → WriteDecision
2. Best-effort pending payment adjustment (gateway)
3. Write the decided document (payment + parent in one commit)
4. Notify the owners (fire-and-continue)
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.processors.bot import BotNotifier
from app.processors.stripe_gateway import StripeGateway
from app.schemas.documents import PaymentDoc, TransactionDoc
from app.services import rate, store
from app.services.decision import Notification, PendingAdjustment, WriteDecision
from app.services.payment_machine import on_payment_change
from app.services.transaction_machine import on_transaction_change

logger = logging.getLogger(__name__)


CLIENTS = {
    "notifier": BotNotifier(),
    "gateway": StripeGateway(),
}

ABANDONED = "abandoned"


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


async def notify(db: Session, notification: Notification) -> bool:
    targets = notification.targets
    if targets is None:
        targets = store.resolve_owners(db, notification.license_number) if notification.license_number else []
    if not targets:
        logger.info("No owners to notify for %s (%s)", notification.kind, notification.license_number)
        return False
    try:
        return await CLIENTS["notifier"].send(notification.kind, targets, notification.payload)
    except Exception:
        logger.exception("Notification %s failed", notification.kind)
        return False


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------
async def write_transaction(
    db: Session,
    tid: str,
    document: Optional[TransactionDoc],
    now: Optional[datetime] = None,
) -> WriteDecision:
    """Replace transactions/{tid} and process the captured change."""
    before = store.get_transaction(db, tid)
    store.put_transaction(db, tid, document)
    _commit(db)
    return await handle_transaction_change(db, tid, before, document, now=now)


async def update_transaction(db: Session, tid: str, now: Optional[datetime] = None, **fields) -> WriteDecision:
    """Merge `fields` into transactions/{tid} and process the captured change."""
    current = store.get_transaction(db, tid)
    if current is None:
        raise ValueError(f"Transaction {tid} not found")
    return await write_transaction(db, tid, current.model_copy(update=fields), now=now)


async def _adjust_pending_payment(
    db: Session,
    tid: str,
    adjustment: PendingAdjustment,
    now: Optional[datetime],
) -> None:
    gateway = CLIENTS["gateway"]
    try:
        if adjustment.action == PendingAdjustment.UPDATE:
            await gateway.update_intent(adjustment.pid, adjustment.amount)
            # Recorded without the edit marker; the payment machine ignores it.
            await update_payment(db, tid, adjustment.pid, now=now, amount=adjustment.amount)
        else:
            await gateway.cancel_intent(adjustment.pid, ABANDONED)
    except Exception:
        logger.exception(
            "Transaction %s: could not %s pending payment %s", tid, adjustment.action, adjustment.pid
        )


async def handle_transaction_change(
    db: Session,
    tid: str,
    before: Optional[TransactionDoc],
    after: Optional[TransactionDoc],
    now: Optional[datetime] = None,
) -> WriteDecision:
    decision = on_transaction_change(tid, before, after, db, now=now)
    if decision.reason and decision.writes:
        logger.info("Transaction %s: %s (%s)", tid, decision.action, decision.reason)

    if decision.adjustment is not None:
        await _adjust_pending_payment(db, tid, decision.adjustment, now)
    if decision.writes:
        await write_transaction(db, tid, decision.document, now=now)
    if decision.notification is not None:
        await notify(db, decision.notification)
    return decision


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
async def write_payment(
    db: Session,
    tid: str,
    pid: str,
    document: Optional[PaymentDoc],
    parent: Optional[TransactionDoc] = None,
    now: Optional[datetime] = None,
) -> WriteDecision:
    """
    Replace transactions/{tid}/payments/{pid}, optionally together with a new
    value of the owning transaction, in a single commit.
    """
    before = store.get_payment(db, tid, pid)
    parent_before = store.get_transaction(db, tid) if parent is not None else None
    store.put_payment(db, tid, pid, document)
    if parent is not None:
        store.put_transaction(db, tid, parent)
    _commit(db)

    if parent is not None:
        await handle_transaction_change(db, tid, parent_before, parent, now=now)
    return await handle_payment_change(db, tid, pid, before, document, now=now)


async def update_payment(db: Session, tid: str, pid: str, now: Optional[datetime] = None, **fields) -> WriteDecision:
    current = store.get_payment(db, tid, pid)
    if current is None:
        raise ValueError(f"Payment {pid} not found on transaction {tid}")
    return await write_payment(db, tid, pid, current.model_copy(update=fields), now=now)


async def handle_payment_change(
    db: Session,
    tid: str,
    pid: str,
    before: Optional[PaymentDoc],
    after: Optional[PaymentDoc],
    now: Optional[datetime] = None,
) -> WriteDecision:
    decision = on_payment_change(tid, pid, before, after, db)
    if decision.reason and decision.writes:
        logger.info("Payment %s on %s: %s (%s)", pid, tid, decision.action, decision.reason)

    if decision.writes:
        await write_payment(db, tid, pid, decision.document, parent=decision.parent, now=now)
    # The balance write above has committed before anyone is told about it.
    if decision.notification is not None:
        await notify(db, decision.notification)
    return decision


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
def set_rate(db: Session, value: Optional[float]) -> None:
    """Write the per-day rate and fire its write notification."""
    store.write_rate(db, value)
    _commit(db)
    rate.on_rate_change(value)
