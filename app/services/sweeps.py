"""
Periodic sweeps over transactions still inside the facility.

warn_open_transactions   (nightly, Config.WARNING_SCHEDULE)
    One batched "warning" notification to every owner of a car that is still
    parked, so they can leave before the next day is charged.

recalculate_open_fees    (early morning, Config.RECALCULATE_SCHEDULE)
    Marks every open transaction with is_overnight + is_edit, which sends it
    through the transaction state machine's overnight recompute.

Each transaction/plate is handled independently: one failure is logged and
the sweep carries on.
"""
import logging
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from app.services import change_feed, store
from app.services.decision import Notification

logger = logging.getLogger(__name__)


class SweepResult:
    def __init__(self, job: str, scanned: int = 0, processed: int = 0, targets: int = 0, failed: Optional[List[str]] = None):
        self.job = job
        self.scanned = scanned
        self.processed = processed
        self.targets = targets
        self.failed = failed or []


async def warn_open_transactions(db: Session) -> SweepResult:
    transactions = store.open_transactions(db)
    result = SweepResult("warning", scanned=len(transactions))
    if not transactions:
        logger.info("No in-system transaction.")
        return result

    targets: Set[str] = set()
    plates: Set[str] = set()
    for transaction in transactions:
        if transaction.timestamp_out is not None or transaction.license_number in plates:
            continue
        try:
            targets.update(store.resolve_owners(db, transaction.license_number))
            plates.add(transaction.license_number)
            result.processed += 1
        except Exception:
            logger.exception("Warning sweep: could not resolve owners of %s", transaction.license_number)
            result.failed.append(transaction.license_number)

    result.targets = len(targets)
    if targets:
        await change_feed.notify(db, Notification("warning", {}, targets=sorted(targets)))

    logger.info("Send warning notifications successfully. (%d targets)", len(targets))
    return result


async def recalculate_open_fees(db: Session, now: Optional[datetime] = None) -> SweepResult:
    transactions = store.open_transactions(db)
    result = SweepResult("recalculate", scanned=len(transactions))

    for transaction in transactions:
        if not transaction.tid:
            logger.warning(
                "Recalculate sweep: open transaction for %s (in %s) was never processed; skipped",
                transaction.license_number, transaction.timestamp_in,
            )
            result.failed.append(transaction.license_number)
            continue
        try:
            await change_feed.update_transaction(
                db, transaction.tid, now=now, is_overnight=True, is_edit=True
            )
            result.processed += 1
        except Exception:
            logger.exception("Recalculate sweep: transaction %s failed", transaction.tid)
            db.rollback()
            result.failed.append(transaction.tid)

    logger.info(
        "Recalculate fee in-system transactions successfully. (%d of %d)",
        result.processed, result.scanned,
    )
    return result
