"""
Outcome Webhook - Report forwarding outcomes to an external URL
===============================================================

Posts one JSON document per evaluated message. Delivery happens on a
background thread; failures are logged and never affect forwarding.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from core.logging import get_logger, mask_phone
from core.models import InboundMessage
from .forwarder import ForwardOutcome

logger = get_logger("services.webhook")


class OutcomeWebhook:
    """
    Fire-and-forget HTTP notifier for forwarding outcomes.

    Example:
        webhook = OutcomeWebhook("https://example.org/hooks/sms")
        webhook.notify(message, outcome)
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        background: bool = True
    ):
        """
        Initialize the webhook.

        Args:
            url: Endpoint receiving POSTed outcomes
            headers: Extra HTTP headers
            timeout: Request timeout in seconds
            background: Deliver on a daemon thread
        """
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self.background = background

    @classmethod
    def from_config(cls, sms_config) -> Optional["OutcomeWebhook"]:
        """Return a webhook if enabled in the ``sms`` config section."""
        if not sms_config.webhook_enabled or not sms_config.webhook_url:
            return None
        return cls(sms_config.webhook_url, headers=sms_config.webhook_headers)

    def build_payload(self, message: InboundMessage, outcome: ForwardOutcome) -> Dict[str, Any]:
        sender = message.metadata.get("sender")
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": {
                "sender": mask_phone(sender) if sender else None,
                "length": len(message.body),
                "parts": len(message.parts),
            },
            "outcome": outcome.to_dict(),
        }

    def notify(self, message: InboundMessage, outcome: ForwardOutcome) -> None:
        """Send the outcome, on a background thread unless disabled."""
        payload = self.build_payload(message, outcome)

        if self.background:
            threading.Thread(target=self._post, args=(payload,), daemon=True).start()
        else:
            self._post(payload)

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload, headers=self.headers)
                response.raise_for_status()
            logger.debug(f"Outcome webhook delivered ({payload['outcome']['status']})")
        except httpx.HTTPError as e:
            logger.error(f"Outcome webhook failed: {e}")
