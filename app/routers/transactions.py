from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.requests import PaymentRequestBody
from app.schemas.responses import PaymentRequestResponse
from app.services.checkout import request_payment

router = APIRouter()


@router.post("/{tid}/payments", response_model=PaymentRequestResponse)
async def create_payment(tid: str, body: PaymentRequestBody, db: Session = Depends(get_db)):
    """
    Open a payment intent for the outstanding balance of a transaction.

    - Transaction must exist and be Unpaid
    - An open Pending payment is returned instead of creating a second one
    - The new payment goes through the payment state machine
    """
    try:
        result = await request_payment(tid, db, paid_by=body.paid_by)
    except ValueError as e:
        detail = str(e)
        status_code = 404 if "not found" in detail else 409
        raise HTTPException(status_code=status_code, detail=detail)
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=f"Gateway error: {str(e)}")

    return PaymentRequestResponse(
        tid=result.tid,
        pid=result.pid,
        amount=result.amount,
        client_secret=result.client_secret,
        reused=result.reused,
    )
