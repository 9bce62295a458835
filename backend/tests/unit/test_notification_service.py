"""
Unit tests for push providers and the notification dispatcher.
"""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from carenow.lib.metrics import get_metrics_collector
from carenow.services.calls import CallPolicy
from carenow.services.notification_service import (
    ConsoleNotificationProvider,
    FCMNotificationProvider,
    NotificationDispatcher,
    get_notification_dispatcher,
)

FAST = CallPolicy(timeout_seconds=1, attempts=1, backoff_seconds=0)


def _notifications(status):
    return get_metrics_collector().get_counter_value("notifications_sent_total", {"status": status})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_console_provider(capsys):
    """Test console provider prints the push."""
    provider = ConsoleNotificationProvider()

    await provider.send("device-token-123", "New booking", "You have a new booking", {"booking_id": "b1"})

    out = capsys.readouterr().out
    assert "device-token-123" in out
    assert "New booking" in out


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fcm_provider_posts_payload():
    """Test FCM provider sends title, body and stringified data."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": 1})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = FCMNotificationProvider(server_key="secret", endpoint="https://fcm.test/send", client=client)
        await provider.send("tok", "Booking confirmed", "Confirmed", {"booking_id": "b1", "attempt": 2})

    assert seen["auth"] == "key=secret"
    assert seen["body"] == {
        "to": "tok",
        "notification": {"title": "Booking confirmed", "body": "Confirmed"},
        "data": {"booking_id": "b1", "attempt": "2"},
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fcm_provider_raises_on_gateway_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500))

    async with httpx.AsyncClient(transport=transport) as client:
        provider = FCMNotificationProvider(server_key="secret", endpoint="https://fcm.test/send", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await provider.send("tok", "t", "b", {})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatcher_sends():
    provider = AsyncMock()
    dispatcher = NotificationDispatcher(provider, FAST)

    sent = await dispatcher.send("tok", "Title", "Body", {"booking_id": "b1"})

    assert sent is True
    provider.send.assert_awaited_once_with("tok", "Title", "Body", {"booking_id": "b1"})
    assert _notifications("sent") == 1


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, ""])
async def test_dispatcher_skips_missing_token(token):
    provider = AsyncMock()
    dispatcher = NotificationDispatcher(provider, FAST)

    sent = await dispatcher.send(token, "Title", "Body")

    assert sent is False
    provider.send.assert_not_awaited()
    assert _notifications("skipped") == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatcher_swallows_provider_failure():
    """Delivery errors are logged and counted, never raised."""
    provider = AsyncMock()
    provider.send.side_effect = httpx.ConnectError("refused")
    dispatcher = NotificationDispatcher(provider, FAST)

    sent = await dispatcher.send("tok", "Title", "Body", {"booking_id": "b1"})

    assert sent is False
    assert _notifications("failed") == 1


@pytest.mark.unit
def test_factory_selects_provider():
    with patch("carenow.services.notification_service.settings") as mock_settings:
        mock_settings.notification_provider = "fcm"
        mock_settings.fcm_server_key = "key"
        assert isinstance(get_notification_dispatcher().provider, FCMNotificationProvider)

        mock_settings.fcm_server_key = ""
        assert isinstance(get_notification_dispatcher().provider, ConsoleNotificationProvider)
