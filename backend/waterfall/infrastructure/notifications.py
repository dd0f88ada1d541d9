"""Notification Dispatcher — non-blocking fan-out of lifecycle events to a delivery sink.

Invariants:
    - publish() never blocks and never raises: delivery runs in a background task
    - Delivery failure is invisible to the core (logged with error_code, then dropped)
    - Pending deliveries are strongly referenced until done (no GC'd tasks)
    - WebhookSink: non-2xx and transport errors mapped to NotificationDeliveryError

Design Decisions:
    - Sink protocol separates "when" (dispatcher) from "how" (sink): rendering and
      delivery guarantees belong to the collaborator, not the waitlist core
    - Bearer API key + sender address mirror the transactional email provider contract
    - LoggingSink is the default when no webhook URL is configured (local dev, tests)
"""

import asyncio
import logging
from typing import Protocol

import httpx

from waterfall.core.errors import NotificationDeliveryError
from waterfall.core.lifecycle_events import LifecycleEvent

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def deliver(self, event: LifecycleEvent) -> None: ...


class LoggingSink:
    """Writes events to the log. Stands in for a real provider."""

    async def deliver(self, event: LifecycleEvent) -> None:
        logger.info(
            f"Notification {event.kind.value} for {event.identity}",
            extra={
                "cycle_id": event.cycle_id,
                "registrant_id": event.registrant_id,
            },
        )


class WebhookSink:
    """POSTs event payloads to a notification service with a bearer API key."""

    def __init__(
        self,
        url: str,
        api_key: str,
        from_email: str = "noreply@readingroom.dev",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ValueError("notification API key is not set")
        self.url = url
        self.from_email = from_email
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def deliver(self, event: LifecycleEvent) -> None:
        body = {**event.to_payload(), "from": self.from_email}
        try:
            response = await self._client.post(
                self.url, json=body, headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"transport error: {e}") from e
        if response.status_code >= 400:
            raise NotificationDeliveryError(
                f"webhook returned {response.status_code}",
                status_code=response.status_code,
            )

    async def aclose(self) -> None:
        await self._client.aclose()


class BackgroundDispatcher:
    """NotificationDispatcher that delivers through a sink without blocking callers."""

    def __init__(self, sink: NotificationSink):
        self.sink = sink
        self._pending: set[asyncio.Task] = set()

    def publish(self, event: LifecycleEvent) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event))
        except RuntimeError:
            logger.error(
                f"No event loop to deliver {event.kind.value}; dropped",
                extra={"registrant_id": event.registrant_id},
            )
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: LifecycleEvent) -> None:
        try:
            await self.sink.deliver(event)
        except NotificationDeliveryError as e:
            logger.error(
                f"Notification {event.kind.value} failed: {e.message}",
                extra={
                    "error_code": e.code,
                    "cycle_id": event.cycle_id,
                    "registrant_id": event.registrant_id,
                },
            )
        except Exception as e:
            logger.error(
                f"Unexpected notification failure: {e}",
                exc_info=True,
                extra={"registrant_id": event.registrant_id},
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def build_sink(
    webhook_url: str, api_key: str, from_email: str, timeout_seconds: float,
) -> NotificationSink:
    if not webhook_url:
        return LoggingSink()
    return WebhookSink(
        webhook_url, api_key,
        from_email=from_email, timeout_seconds=timeout_seconds,
    )
