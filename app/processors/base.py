from abc import ABC, abstractmethod
from typing import Any, Dict, List


TRANSACTION_KINDS = {"entrance", "exit", "cancel", "overnight", "update", "warning"}
PAYMENT_KINDS = {"receive", "reject", "refund"}


class BaseNotifier(ABC):
    """Delivery channel for owner notifications."""

    @abstractmethod
    async def send(self, kind: str, targets: List[str], payload: Dict[str, Any]) -> bool:
        """
        Push one notification of `kind` to every owner id in targets.
        Fire-and-forget: failures are logged and reported as False, never raised.
        """
        pass


class BaseGateway(ABC):
    """Payment provider holding the payment intents behind Payment documents."""

    @abstractmethod
    async def create_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        """Returns {"id": ..., "client_secret": ...}."""
        pass

    @abstractmethod
    async def update_intent(self, intent_id: str, amount: float) -> None:
        pass

    @abstractmethod
    async def cancel_intent(self, intent_id: str, reason: str) -> None:
        pass

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        pass
