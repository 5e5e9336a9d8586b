from pydantic import BaseModel, field_validator
from typing import Optional

from app.schemas.documents import PaymentDoc, TransactionDoc


class TransactionChange(BaseModel):
    """A captured write of transactions/{tid}: values before and after."""
    before: Optional[TransactionDoc] = None
    after: Optional[TransactionDoc] = None


class PaymentChange(BaseModel):
    before: Optional[PaymentDoc] = None
    after: Optional[PaymentDoc] = None


class RateChange(BaseModel):
    value: Optional[float] = None


class PaymentRequestBody(BaseModel):
    paid_by: Optional[str] = None

    @field_validator("paid_by")
    @classmethod
    def validate_paid_by(cls, v):
        if v is not None and not v.strip():
            raise ValueError("paid_by cannot be blank")
        return v
