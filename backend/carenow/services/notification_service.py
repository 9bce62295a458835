"""
Booking notifications sent as push messages.

Delivery is best-effort: NotificationDispatcher.send never raises, it logs
and counts failures so a booking transition is never undone by a push error.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from carenow.lib.logging import get_logger
from carenow.lib.metrics import get_metrics_collector
from carenow.lib.settings import settings
from carenow.services.calls import CallPolicy, call_collaborator
from carenow.services.errors import ServerFailure


logger = get_logger(__name__)


class PushNotificationProvider(ABC):
    """
    Abstract base class for push delivery gateways.
    """

    @abstractmethod
    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> None:
        """
        Deliver one push message.

        Args:
            token: Device registration token
            title: Notification title
            body: Notification body
            data: String key/value payload for the app

        Raises:
            Exception: on any delivery failure
        """
        pass


class ConsoleNotificationProvider(PushNotificationProvider):
    """
    Console provider for development/testing.
    Prints pushes to console instead of sending.
    """

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> None:
        print("\n" + "=" * 60)
        print(f"Push to {token}:")
        print(f"   Title: {title}")
        print(f"   Body: {body}")
        print(f"   Data: {data}")
        print("=" * 60 + "\n")
        logger.info("Push notification logged to console", extra={"title": title})


class FCMNotificationProvider(PushNotificationProvider):
    """
    Firebase Cloud Messaging over the legacy HTTP endpoint.
    """

    def __init__(
        self,
        server_key: str = settings.fcm_server_key,
        endpoint: str = settings.fcm_endpoint,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.server_key = server_key
        self.endpoint = endpoint
        self._client = client

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> None:
        payload = {
            "to": token,
            "notification": {"title": title, "body": body},
            "data": {key: str(value) for key, value in data.items()},
        }
        headers = {"Authorization": f"key={self.server_key}"}

        if self._client is not None:
            resp = await self._client.post(self.endpoint, json=payload, headers=headers)
            resp.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=settings.collaborator_timeout_seconds) as client:
            resp = await client.post(self.endpoint, json=payload, headers=headers)
            resp.raise_for_status()


class NotificationDispatcher:
    """
    Sends booking notifications through a push provider.

    Handles:
    - Skipping recipients without a device token
    - Timeout on the gateway call
    - Logging and counting of every outcome
    """

    def __init__(
        self,
        provider: Optional[PushNotificationProvider] = None,
        policy: Optional[CallPolicy] = None,
    ):
        self.provider = provider or ConsoleNotificationProvider()
        self.policy = policy
        self.metrics = get_metrics_collector()

    async def send(
        self,
        recipient_token: Optional[str],
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Returns:
            True if the gateway accepted the message, False if it was
            skipped or failed
        """
        if not recipient_token:
            self.metrics.increment_notifications("skipped")
            logger.info("Recipient has no push token, notification skipped", extra={"title": title})
            return False

        try:
            await call_collaborator(
                "send_notification",
                self.provider.send,
                recipient_token,
                title,
                body,
                data or {},
                policy=self.policy,
            )
        except ServerFailure as e:
            self.metrics.increment_notifications("failed")
            logger.warning(
                "Notification delivery failed",
                extra={"title": title, "error": e.message, "notification_data": data or {}},
            )
            return False

        self.metrics.increment_notifications("sent")
        return True


def get_notification_dispatcher() -> NotificationDispatcher:
    """Dispatcher using the provider selected in settings."""
    if settings.notification_provider == "fcm" and settings.fcm_server_key:
        return NotificationDispatcher(FCMNotificationProvider())

    logger.info("Using console push provider (dev mode)")
    return NotificationDispatcher(ConsoleNotificationProvider())
