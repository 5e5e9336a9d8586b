from pydantic import BaseModel
from typing import List, Optional


class DecisionResponse(BaseModel):
    document_id: str
    action: str  # "noop" | "revert" | "commit"
    reason: Optional[str] = None
    notification: Optional[str] = None
    parent_updated: bool = False
    adjustment: Optional[str] = None  # "update" | "cancel"


class PaymentRequestResponse(BaseModel):
    tid: str
    pid: str
    amount: float
    client_secret: Optional[str] = None
    reused: bool


class SweepResponse(BaseModel):
    job: str
    scanned: int
    processed: int
    targets: int = 0
    failed: List[str] = []
