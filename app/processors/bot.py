import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import Config
from app.processors.base import BaseNotifier, PAYMENT_KINDS, TRANSACTION_KINDS

logger = logging.getLogger(__name__)


class BotNotifier(BaseNotifier):
    """
    Chat-bot push service.
    Endpoint: POST {BOT_BASE_URL}/transaction/{kind} or /payment/{kind}
    Auth: shared secret in the `SECRET` header
    Body: the notification payload plus `targets` (owner ids)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else Config.BOT_BASE_URL
        self.secret = secret if secret is not None else Config.APP_SECRET
        self.timeout = timeout if timeout is not None else Config.BOT_TIMEOUT_SECONDS
        self.transport = transport

    def _path(self, kind: str) -> str:
        if kind in TRANSACTION_KINDS:
            return f"/transaction/{kind}"
        if kind in PAYMENT_KINDS:
            return f"/payment/{kind}"
        raise ValueError(f"Unknown notification kind: {kind}")

    async def send(self, kind: str, targets: List[str], payload: Dict[str, Any]) -> bool:
        if not self.base_url:
            logger.warning("BOT_BASE_URL not configured; %s notification dropped", kind)
            return False

        body = {k: v for k, v in payload.items() if v is not None}
        body["targets"] = list(targets)

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    self._path(kind),
                    json=body,
                    headers={"SECRET": self.secret},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Bot rejected %s notification: %s %s", kind, e.response.status_code, e.response.text)
            return False
        except httpx.HTTPError as e:
            logger.error("Failed to reach bot for %s notification: %s", kind, e)
            return False

        logger.info("Sent %s notification to %d target(s)", kind, len(body["targets"]))
        return True
