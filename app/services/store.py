"""
Document-level access to the SQL store.

The state machines think in whole documents (TransactionDoc / PaymentDoc);
this module maps them to and from rows. Functions here never commit: the
change feed groups writes and commits them together, so a payment and its
parent transaction land in one SQL transaction.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app import models
from app.config import Config
from app.schemas.documents import (
    PaymentDoc,
    PaymentStatus,
    TransactionDoc,
    as_utc,
)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    value = as_utc(value)
    return value.replace(tzinfo=None) if value is not None else None


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------
def _transaction_doc(row: models.Transaction) -> TransactionDoc:
    return TransactionDoc(
        tid=row.tid,
        license_number=row.license_number,
        timestamp_in=row.timestamp_in,
        timestamp_out=row.timestamp_out,
        fee=row.fee,
        paid=row.paid,
        status=row.status,
        is_cancel=row.is_cancel,
        is_overnight=row.is_overnight,
        is_edit=row.is_edit,
        remark=row.remark,
        image_in=row.image_in,
        image_out=row.image_out,
        add_by=row.add_by,
    )


def get_transaction(db: Session, tid: str) -> Optional[TransactionDoc]:
    row = db.get(models.Transaction, tid)
    return _transaction_doc(row) if row is not None else None


def put_transaction(db: Session, tid: str, doc: Optional[TransactionDoc]) -> None:
    """Replace the whole document (None deletes it)."""
    row = db.get(models.Transaction, tid)
    if doc is None:
        if row is not None:
            db.delete(row)
        return
    if row is None:
        row = models.Transaction(id=tid)
        db.add(row)
    row.tid = doc.tid
    row.license_number = doc.license_number
    row.timestamp_in = _to_db(doc.timestamp_in)
    row.timestamp_out = _to_db(doc.timestamp_out)
    row.fee = doc.fee
    row.paid = doc.paid
    row.status = doc.status.value if doc.status is not None else None
    row.is_cancel = doc.is_cancel
    row.is_overnight = doc.is_overnight
    row.is_edit = doc.is_edit
    row.remark = doc.remark
    row.image_in = doc.image_in
    row.image_out = doc.image_out
    row.add_by = doc.add_by
    db.flush()


def open_transactions(db: Session) -> List[TransactionDoc]:
    """Transactions whose vehicle is still inside: no exit time, never canceled."""
    rows = db.query(models.Transaction).filter(
        models.Transaction.timestamp_out.is_(None),
        models.Transaction.is_cancel.isnot(True),
    ).order_by(models.Transaction.timestamp_in).all()
    return [_transaction_doc(row) for row in rows]


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
def _payment_doc(row: models.Payment) -> PaymentDoc:
    return PaymentDoc(
        pid=row.pid,
        amount=row.amount,
        timestamp=row.timestamp,
        status=row.status,
        reason=row.reason,
        paid_by=row.paid_by,
        client_secret=row.client_secret,
        is_edit=row.is_edit,
    )


def _payment_row(db: Session, tid: str, pid: str) -> Optional[models.Payment]:
    return db.query(models.Payment).filter(
        models.Payment.transaction_id == tid,
        models.Payment.id == pid,
    ).first()


def get_payment(db: Session, tid: str, pid: str) -> Optional[PaymentDoc]:
    row = _payment_row(db, tid, pid)
    return _payment_doc(row) if row is not None else None


def put_payment(db: Session, tid: str, pid: str, doc: Optional[PaymentDoc]) -> None:
    row = _payment_row(db, tid, pid)
    if doc is None:
        if row is not None:
            db.delete(row)
        return
    if row is None:
        row = models.Payment(id=pid, transaction_id=tid)
        db.add(row)
    row.pid = doc.pid
    row.amount = doc.amount
    row.timestamp = _to_db(doc.timestamp)
    row.status = doc.status.value if doc.status is not None else None
    row.reason = doc.reason
    row.paid_by = doc.paid_by
    row.client_secret = doc.client_secret
    row.is_edit = doc.is_edit
    db.flush()


def pending_payment(db: Session, tid: str) -> Optional[tuple]:
    """First Pending payment of a transaction as (pid, doc), or None."""
    row = db.query(models.Payment).filter(
        models.Payment.transaction_id == tid,
        models.Payment.status == PaymentStatus.PENDING.value,
    ).order_by(models.Payment.timestamp).first()
    if row is None:
        return None
    return row.id, _payment_doc(row)


def settled_total(db: Session, tid: str, exclude_pid: Optional[str] = None) -> float:
    """Sum of amounts over a transaction's payments currently in Success."""
    query = db.query(func.coalesce(func.sum(models.Payment.amount), 0.0)).filter(
        models.Payment.transaction_id == tid,
        models.Payment.status == PaymentStatus.SUCCESS.value,
    )
    if exclude_pid is not None:
        query = query.filter(models.Payment.id != exclude_pid)
    return float(query.scalar())


# ---------------------------------------------------------------------------
# Owners and settings
# ---------------------------------------------------------------------------
def resolve_owners(db: Session, license_number: str) -> List[str]:
    rows = db.query(models.CarOwner.owner_id).filter(
        models.CarOwner.license_number == license_number
    ).order_by(models.CarOwner.owner_id).all()
    return [owner_id for (owner_id,) in rows]


def add_owner(db: Session, license_number: str, owner_id: str) -> None:
    exists = db.query(models.CarOwner).filter(
        models.CarOwner.license_number == license_number,
        models.CarOwner.owner_id == owner_id,
    ).first()
    if exists is None:
        db.add(models.CarOwner(license_number=license_number, owner_id=owner_id))
        db.flush()


def read_rate(db: Session) -> float:
    """Unset rate reads as 0."""
    row = db.get(models.Setting, Config.RATE_SETTING_KEY)
    if row is None or row.value is None:
        return 0.0
    return float(row.value)


def write_rate(db: Session, value: Optional[float]) -> None:
    row = db.get(models.Setting, Config.RATE_SETTING_KEY)
    if row is None:
        row = models.Setting(key=Config.RATE_SETTING_KEY)
        db.add(row)
    row.value = value
    db.flush()
