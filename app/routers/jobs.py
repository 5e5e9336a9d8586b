from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.responses import SweepResponse
from app.services.sweeps import SweepResult, recalculate_open_fees, warn_open_transactions

router = APIRouter()


def sweep_response(result: SweepResult) -> SweepResponse:
    return SweepResponse(
        job=result.job,
        scanned=result.scanned,
        processed=result.processed,
        targets=result.targets,
        failed=result.failed,
    )


@router.post("/overnight-warning", response_model=SweepResponse)
async def overnight_warning(db: Session = Depends(get_db)):
    """
    Warn owners of cars still parked (scheduled nightly).

    One batched notification to every owner of every open transaction's plate.
    """
    return sweep_response(await warn_open_transactions(db))


@router.post("/recalculate-fee", response_model=SweepResponse)
async def recalculate_fee(db: Session = Depends(get_db)):
    """
    Recompute fees of open transactions (scheduled early morning).

    Each transaction is processed independently; failures are listed in
    `failed` without aborting the batch.
    """
    return sweep_response(await recalculate_open_fees(db))
