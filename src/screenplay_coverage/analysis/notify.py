"""Completion notifications (webhooks)."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from screenplay_coverage.constants import WEBHOOK_TIMEOUT
from screenplay_coverage.exceptions import NotificationError

log = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, url: str, payload: dict[str, Any]) -> None: ...  # noqa: D102


class WebhookNotifier:
    """POSTs a JSON summary to a webhook URL.

    Any transport or HTTP status failure is raised as ``NotificationError``;
    the pipeline logs it and carries on.
    """

    def __init__(
        self,
        timeout: float = WEBHOOK_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    def _create_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def notify(self, url: str, payload: dict[str, Any]) -> None:
        try:
            async with self._create_http_client() as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise NotificationError(f"Webhook timeout: {url}") from e
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Webhook returned HTTP {e.response.status_code}: {url}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook delivery failed for {url}: {e}") from e
        log.info("Webhook delivered to %s", url)
