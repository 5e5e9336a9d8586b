"""
Document snapshots handed to the state machines.

A change-capture invocation carries the value of a document before and after a
write. These models are those values: every field the original document may
carry, with instants normalized to aware UTC so that before/after comparisons
never mix naive and aware datetimes.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class TransactionStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    CANCEL = "Cancel"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PROCESS = "Process"
    SUCCESS = "Success"
    FAILED = "Failed"
    REFUND = "Refund"
    CANCELED = "Canceled"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive instants are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TransactionDoc(BaseModel):
    tid: Optional[str] = None
    license_number: str
    timestamp_in: datetime
    timestamp_out: Optional[datetime] = None
    fee: float = 0.0
    paid: float = 0.0
    status: Optional[TransactionStatus] = None
    is_cancel: Optional[bool] = None
    is_overnight: Optional[bool] = None
    is_edit: Optional[bool] = None
    remark: Optional[str] = None
    image_in: Optional[str] = None
    image_out: Optional[str] = None
    add_by: Optional[str] = None

    @field_validator("timestamp_in", "timestamp_out")
    @classmethod
    def normalize_instant(cls, v):
        return as_utc(v)


class PaymentDoc(BaseModel):
    pid: Optional[str] = None
    amount: float
    timestamp: datetime
    status: Optional[PaymentStatus] = None
    reason: Optional[str] = None
    paid_by: Optional[str] = None
    client_secret: Optional[str] = None
    is_edit: Optional[bool] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_instant(cls, v):
        return as_utc(v)

    @field_validator("amount")
    @classmethod
    def positive_amount(cls, v):
        if v <= 0:
            raise ValueError("amount must be positive")
        return v
