"""Webhook notifications for cycle outcomes."""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum

import httpx

from backup_drill.config import WebhookConfig
from backup_drill.retry import RetryExhausted, retry_with_backoff
from backup_drill.scrub import Scrubber, get_scrubber

logger = logging.getLogger(__name__)

WEBHOOK_ATTEMPTS = 3
WEBHOOK_BASE_DELAY = 2
WEBHOOK_TIMEOUT = 10.0


class Status(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


@dataclass
class NotificationEvent:
    status: Status
    message: str
    backup_file: str = ""
    duration_seconds: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat(timespec="seconds"))


class Notifier:
    """Posts NotificationEvents to an optional webhook.

    Delivery problems are logged as warnings and never raised.
    """

    def __init__(
        self,
        webhook: WebhookConfig,
        service: str,
        host: str = "",
        client: httpx.Client | None = None,
        scrubber: Scrubber | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.webhook = webhook
        self.service = service
        self.host = host or socket.gethostname()
        self._client = client
        self._scrub = scrubber or get_scrubber()
        self._sleep = sleep

    def should_send(self, status: Status) -> bool:
        if not self.webhook.enabled:
            logger.debug("Webhook not configured, skipping notification")
            return False
        if status is Status.SUCCESS and not self.webhook.on_success:
            logger.debug("Webhook on success disabled, skipping")
            return False
        if status is not Status.SUCCESS and not self.webhook.on_failure:
            logger.debug("Webhook on failure disabled, skipping")
            return False
        return True

    def payload(self, event: NotificationEvent) -> dict:
        data = asdict(event)
        data["status"] = event.status.value
        data["message"] = self._scrub(event.message)
        data["service"] = self.service
        data["host"] = self.host
        return data

    def _post(self, payload: dict) -> None:
        if self._client is not None:
            response = self._client.post(self.webhook.url, json=payload, timeout=WEBHOOK_TIMEOUT)
        else:
            response = httpx.post(self.webhook.url, json=payload, timeout=WEBHOOK_TIMEOUT)
        response.raise_for_status()

    def notify(self, event: NotificationEvent) -> bool:
        """Send ``event`` if the toggles allow it. Returns True when delivered."""
        if not self.should_send(event.status):
            return False

        logger.info(f"Sending webhook notification: {event.status.value}")
        payload = self.payload(event)
        try:
            retry_with_backoff(
                lambda: self._post(payload),
                attempts=WEBHOOK_ATTEMPTS,
                base_delay=WEBHOOK_BASE_DELAY,
                description="Webhook delivery",
                retry_on=(httpx.HTTPError,),
                sleep=self._sleep,
            )
        except RetryExhausted:
            logger.warning(f"Failed to send webhook after {WEBHOOK_ATTEMPTS} attempts")
            return False
        except httpx.InvalidURL as e:
            logger.warning(f"Invalid webhook URL: {e}")
            return False
        logger.debug("Webhook sent successfully")
        return True
