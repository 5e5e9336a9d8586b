"""
Parking fee arithmetic.

Fees are charged per calendar day in the facility's local zone:
  - the day of entry always costs one rate
  - every further local midnight crossed before the end of the exit day
    costs one more rate

Entry 10:00 and exit 15:00 the same day → 1 × rate.
Entry 10:00, exit 22:00 the next day   → 2 × rate.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.config import Config
from app.schemas.documents import TransactionStatus, as_utc


def facility_zone() -> ZoneInfo:
    return ZoneInfo(Config.FACILITY_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_local(instant: datetime) -> datetime:
    return as_utc(instant).astimezone(facility_zone())


def compute_fee(
    time_in: datetime,
    time_out: Optional[datetime],
    rate_per_day: float,
    now: Optional[datetime] = None,
) -> float:
    """
    Compute the fee for a stay from time_in to time_out.

    time_out=None means the vehicle is still inside; `now` (default: current
    time) stands in for the exit. Callers reject exit-before-entry with
    is_valid_timestamp() before calling this.
    """
    exit_at = time_out if time_out is not None else (now or utcnow())

    boundary = to_local(time_in).replace(hour=0, minute=0, second=0, microsecond=0)
    boundary = boundary + timedelta(days=1)
    end = to_local(exit_at).replace(hour=23, minute=59, second=59, microsecond=999000)

    fee = rate_per_day
    while boundary < end:
        fee += rate_per_day
        boundary = boundary + timedelta(days=1)

    if fee == 0:
        fee = rate_per_day
    return fee


def is_valid_timestamp(
    time_in: datetime,
    time_out: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    exit_at = time_out if time_out is not None else (now or utcnow())
    return as_utc(time_in) < as_utc(exit_at)


def transaction_status(fee: float, paid: float, is_cancel: Optional[bool]) -> TransactionStatus:
    if is_cancel:
        return TransactionStatus.CANCEL
    return TransactionStatus.PAID if fee <= paid else TransactionStatus.UNPAID


def format_timestamp(instant: Optional[datetime]) -> Optional[str]:
    """DD/MM/YYYY HH:MM:SS in facility time, as shown in owner notifications."""
    if instant is None:
        return None
    return to_local(instant).strftime("%d/%m/%Y %H:%M:%S")
