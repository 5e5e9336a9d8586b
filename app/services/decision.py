from typing import Any, Dict, List, Optional


NOOP = "noop"
REVERT = "revert"
COMMIT = "commit"


class Notification:
    """
    A request to the notification dispatcher.

    Transaction notifications carry the license number and are addressed to
    the car's current owners at dispatch time; payment notifications name
    their target directly.
    """

    def __init__(
        self,
        kind: str,
        payload: Dict[str, Any],
        license_number: Optional[str] = None,
        targets: Optional[List[str]] = None,
    ):
        self.kind = kind
        self.payload = payload
        self.license_number = license_number
        self.targets = targets

    def __repr__(self):
        return f"Notification({self.kind!r})"


class PendingAdjustment:
    """Change to an open payment intent after the transaction's fee moved."""

    UPDATE = "update"
    CANCEL = "cancel"

    def __init__(self, pid: str, action: str, amount: Optional[float] = None):
        self.pid = pid
        self.action = action
        self.amount = amount


class WriteDecision:
    """
    Outcome of one state-machine run.

    action:
      noop   - leave the document as written
      revert - write `document` (the pre-image) back
      commit - write `document` (the processed value) back
    parent: new value of the owning transaction, written together with the
      payment (payment machine only).
    """

    def __init__(
        self,
        action: str,
        document=None,
        notification: Optional[Notification] = None,
        parent=None,
        adjustment: Optional[PendingAdjustment] = None,
        reason: Optional[str] = None,
    ):
        self.action = action
        self.document = document
        self.notification = notification
        self.parent = parent
        self.adjustment = adjustment
        self.reason = reason

    @classmethod
    def noop(cls, reason: Optional[str] = None) -> "WriteDecision":
        return cls(NOOP, reason=reason)

    @classmethod
    def revert(cls, previous, reason: Optional[str] = None) -> "WriteDecision":
        return cls(REVERT, document=previous, reason=reason)

    @property
    def writes(self) -> bool:
        return self.action in (REVERT, COMMIT)
