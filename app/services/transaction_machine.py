"""
Transaction state machine.

Runs on every captured write to a transaction document and decides what the
document should become:

  create  → stamp tid, compute fee, Unpaid, paid=0, notify "entrance"
  update  → only for fresh edits (is_edit false → true); apply the permitted
            field changes, recompute fee/status, adjust an open payment
            intent, notify the owners
  delete  → ignored

Permitted edits:
  license_number, image_in, remark   no condition
  timestamp_in, timestamp_out        entry must stay before exit; exit-only
                                     changes wait until paid matches the fee
  image_out                          only once the transaction is Paid
  is_cancel                          only while Unpaid with nothing paid
  is_overnight                       recompute fee from current timestamps

Canceled transactions are frozen: every edit is reverted.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.schemas.documents import TransactionDoc, TransactionStatus
from app.services import store
from app.services.decision import COMMIT, Notification, PendingAdjustment, WriteDecision
from app.services.fee import compute_fee, format_timestamp, is_valid_timestamp, transaction_status
from app.services.guard import is_creation_echo, is_fresh_edit
from app.services.rate import get_rate_per_day

logger = logging.getLogger(__name__)

# Fields that only the state machine manages; ignored when comparing values.
TRANSIENT_FIELDS = {"is_edit", "is_overnight"}


class TransactionEdit:
    """Which permitted fields an edit proposes to change."""

    def __init__(self, previous: TransactionDoc, proposed: TransactionDoc):
        self.license_number = previous.license_number != proposed.license_number
        self.timestamp_in = previous.timestamp_in != proposed.timestamp_in
        self.timestamp_out = previous.timestamp_out != proposed.timestamp_out
        self.image_in = previous.image_in != proposed.image_in
        self.image_out = previous.image_out != proposed.image_out
        self.is_cancel = bool(previous.is_cancel) != bool(proposed.is_cancel)
        self.remark = previous.remark != proposed.remark
        self.is_overnight = bool(proposed.is_overnight)

    def any(self) -> bool:
        return (
            self.license_number
            or self.timestamp_in
            or self.timestamp_out
            or self.image_in
            or self.image_out
            or self.is_cancel
            or self.remark
            or self.is_overnight
        )


def notification_payload(transaction: TransactionDoc) -> Dict[str, Any]:
    return {
        "tid": transaction.tid,
        "license_number": transaction.license_number,
        "timestamp_in": format_timestamp(transaction.timestamp_in),
        "timestamp_out": format_timestamp(transaction.timestamp_out),
        "fee": transaction.fee,
        "image_in": transaction.image_in,
        "image_out": transaction.image_out,
    }


def _with_fee(transaction: TransactionDoc, fee: float, **changes) -> TransactionDoc:
    return transaction.model_copy(update={
        **changes,
        "fee": fee,
        "status": transaction_status(fee, transaction.paid, transaction.is_cancel),
    })


def _same_value(a: TransactionDoc, b: TransactionDoc) -> bool:
    return a.model_dump(exclude=TRANSIENT_FIELDS) == b.model_dump(exclude=TRANSIENT_FIELDS)


def _create(tid: str, proposed: TransactionDoc, db: Session, now: Optional[datetime]) -> WriteDecision:
    fee = compute_fee(proposed.timestamp_in, None, get_rate_per_day(db), now)
    transaction = proposed.model_copy(update={
        "tid": tid,
        "status": TransactionStatus.UNPAID,
        "fee": fee,
        "paid": 0.0,
        "timestamp_out": None,
        "remark": "",
        "is_edit": None,
        "is_overnight": None,
    })
    logger.info("Transaction %s created for %s (fee %s)", tid, transaction.license_number, fee)
    return WriteDecision(
        COMMIT,
        document=transaction,
        notification=Notification(
            "entrance",
            notification_payload(transaction),
            license_number=transaction.license_number,
        ),
    )


def _apply_timestamps(
    tid: str,
    transaction: TransactionDoc,
    proposed: TransactionDoc,
    edit: TransactionEdit,
    db: Session,
    now: Optional[datetime],
) -> TransactionDoc:
    time_in = proposed.timestamp_in if edit.timestamp_in else transaction.timestamp_in
    time_out = proposed.timestamp_out if edit.timestamp_out else transaction.timestamp_out

    # An invalid pair drops only the timestamp change; other fields in the same
    # edit still apply.
    if not is_valid_timestamp(time_in, time_out, now):
        logger.warning(
            "Transaction %s: rejected timestamps in=%s out=%s", tid, time_in, time_out
        )
        return transaction

    fee = compute_fee(time_in, time_out, get_rate_per_day(db), now)

    if edit.timestamp_out and not edit.timestamp_in and fee != transaction.paid:
        # Exit stays open until the balance is settled.
        logger.info(
            "Transaction %s: exit deferred, fee %s != paid %s", tid, fee, transaction.paid
        )
        return _with_fee(transaction, fee)

    return _with_fee(transaction, fee, timestamp_in=time_in, timestamp_out=time_out)


def _pending_adjustment(db: Session, tid: str, transaction: TransactionDoc) -> Optional[PendingAdjustment]:
    pending = store.pending_payment(db, tid)
    if pending is None:
        return None
    pid, payment = pending
    shortfall = transaction.fee - transaction.paid
    if transaction.status != TransactionStatus.CANCEL and shortfall > payment.amount:
        return PendingAdjustment(pid, PendingAdjustment.UPDATE, shortfall)
    return PendingAdjustment(pid, PendingAdjustment.CANCEL)


def _notification_kind(transaction: TransactionDoc, proposed: TransactionDoc) -> Optional[str]:
    if transaction.status == TransactionStatus.CANCEL:
        return "cancel"
    if transaction.timestamp_out is not None and transaction.status == TransactionStatus.PAID:
        return "exit"
    if proposed.is_overnight:
        return "overnight"
    if (
        proposed.license_number != transaction.license_number
        or proposed.timestamp_in != transaction.timestamp_in
        or proposed.timestamp_out != transaction.timestamp_out
        or proposed.fee != transaction.fee
    ):
        return "update"
    return None


def _update(
    tid: str,
    previous: TransactionDoc,
    proposed: TransactionDoc,
    db: Session,
    now: Optional[datetime],
) -> WriteDecision:
    if not is_fresh_edit(previous, proposed):
        return WriteDecision.noop("not a fresh edit")

    if previous.is_cancel:
        logger.info("Transaction %s is canceled; edit reverted", tid)
        return WriteDecision.revert(previous, "transaction is canceled")

    edit = TransactionEdit(previous, proposed)
    if not edit.any():
        logger.info("Transaction %s: edit changes no permitted field; reverted", tid)
        return WriteDecision.revert(previous, "no permitted change")

    transaction = previous.model_copy()

    if edit.license_number:
        transaction.license_number = proposed.license_number
    if edit.image_in:
        transaction.image_in = proposed.image_in
    if edit.remark:
        transaction.remark = proposed.remark

    if edit.timestamp_in or edit.timestamp_out:
        transaction = _apply_timestamps(tid, transaction, proposed, edit, db, now)

    if edit.image_out:
        if transaction.timestamp_out is not None and transaction.status == TransactionStatus.PAID:
            transaction.image_out = proposed.image_out
        else:
            logger.info("Transaction %s: image_out ignored until paid and exited", tid)

    if edit.is_cancel and proposed.is_cancel:
        if transaction.paid == 0 and transaction.status == TransactionStatus.UNPAID:
            transaction.is_cancel = True
            transaction.status = TransactionStatus.CANCEL
        else:
            logger.info(
                "Transaction %s: cancel rejected (status %s, paid %s)",
                tid, transaction.status, transaction.paid,
            )

    if proposed.is_overnight:
        fee = compute_fee(
            transaction.timestamp_in, transaction.timestamp_out, get_rate_per_day(db), now
        )
        transaction = _with_fee(transaction, fee)

    if not proposed.is_overnight and _same_value(transaction, previous):
        return WriteDecision.revert(previous, "edit rejected")

    adjustment = None
    if transaction.fee != previous.fee or transaction.status == TransactionStatus.CANCEL:
        adjustment = _pending_adjustment(db, tid, transaction)

    kind = _notification_kind(transaction, proposed)
    notification = None
    if kind:
        notification = Notification(
            kind,
            notification_payload(transaction),
            license_number=transaction.license_number,
        )

    transaction = transaction.model_copy(update={"is_edit": None, "is_overnight": None})
    return WriteDecision(
        COMMIT,
        document=transaction,
        notification=notification,
        adjustment=adjustment,
    )


def on_transaction_change(
    tid: str,
    previous: Optional[TransactionDoc],
    next: Optional[TransactionDoc],
    db: Session,
    now: Optional[datetime] = None,
) -> WriteDecision:
    """
    Decide how to react to one captured write of transactions/{tid}.

    Never raises: an unexpected failure reverts the document to its
    pre-image (or leaves a new document untouched) and is logged.
    """
    try:
        if next is None:
            return WriteDecision.noop("delete ignored")
        if previous is None:
            return _create(tid, next, db, now)
        if is_creation_echo(previous, next, "tid"):
            return WriteDecision.noop("creation write-back")
        return _update(tid, previous, next, db, now)
    except Exception:
        logger.exception("Transaction %s: processing failed, reverting", tid)
        if previous is None:
            return WriteDecision.noop("processing failed")
        return WriteDecision.revert(previous, "processing failed")
