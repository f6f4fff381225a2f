"""Webhook notifier over a mocked HTTP transport."""

import json

import httpx
import pytest

from screenplay_coverage.analysis.notify import WebhookNotifier
from screenplay_coverage.exceptions import NotificationError

pytestmark = pytest.mark.unit

URL = "https://hooks.example.test/coverage"


@pytest.mark.asyncio
async def test_payload_is_posted_as_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(204)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

    await notifier.notify(URL, {"script_id": "s-1", "status": "completed"})

    (request,) = received
    assert request.method == "POST"
    assert str(request.url) == URL
    assert json.loads(request.content) == {"script_id": "s-1", "status": "completed"}


@pytest.mark.asyncio
async def test_error_status_raises_notification_error():
    notifier = WebhookNotifier(
        transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )

    with pytest.raises(NotificationError, match="HTTP 500"):
        await notifier.notify(URL, {})


@pytest.mark.asyncio
async def test_timeout_raises_notification_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow hook", request=request)

    notifier = WebhookNotifier(timeout=0.5, transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationError, match="timeout") as ei:
        await notifier.notify(URL, {})

    assert isinstance(ei.value.__cause__, httpx.TimeoutException)


@pytest.mark.asyncio
async def test_connection_failure_raises_notification_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationError, match="delivery failed"):
        await notifier.notify(URL, {})
