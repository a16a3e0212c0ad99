"""
Decision webhook — fire-and-forget notification after a decision is committed.

Delivery is best-effort: the reviewer's response never waits on it, and
neither a non-2xx answer nor a network failure or timeout is surfaced. Each
send runs as a detached task with its own deadline.
"""

import asyncio
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import httpx
import structlog

from certval.errors import NotificationError
from certval.validation.schemas import DecisionNotification

logger = structlog.get_logger(__name__)


def report_url(base_url: str, cert_no: str) -> str:
    return f"{base_url.rstrip('/')}/dashboard/report-viewer/{quote(cert_no, safe='')}"


def build_notification(
    cert_no: str,
    user: str,
    decided_at: datetime,
    report_base_url: str,
) -> DecisionNotification:
    return DecisionNotification(
        cert_no=cert_no,
        user=user,
        timestamp=decided_at.isoformat(),
        report_url=report_url(report_base_url, cert_no),
    )


class DecisionNotifier:
    """
    Posts DecisionNotification JSON to the configured webhook.

    No-op unless enabled and a URL is configured. Pending sends are held in
    _tasks until they finish so the event loop does not drop them, and can be
    awaited with drain() at shutdown.
    """

    def __init__(
        self,
        enabled: bool,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.enabled = enabled
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return bool(self.enabled and self.url)

    def notify(self, payload: DecisionNotification) -> Optional[asyncio.Task]:
        """Schedule delivery and return immediately."""
        if not self.active:
            logger.debug("webhook_skipped", cert_no=payload.cert_no, enabled=self.enabled)
            return None
        task = asyncio.create_task(self._deliver(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, payload: DecisionNotification) -> None:
        try:
            await self.send(payload)
        except Exception as e:
            logger.warning("webhook_failed", cert_no=payload.cert_no, url=self.url, error=str(e))

    async def send(self, payload: DecisionNotification) -> None:
        """Single bounded POST. Raises NotificationError on failure."""
        try:
            async with asyncio.timeout(self.timeout):
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.post(self.url, json=payload.model_dump())
        except TimeoutError as e:
            raise NotificationError(f"webhook timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise NotificationError(f"webhook transport error: {e}") from e

        if not response.is_success:
            raise NotificationError(f"webhook returned HTTP {response.status_code}")

        logger.info("webhook_sent", cert_no=payload.cert_no, status=response.status_code)

    async def drain(self) -> None:
        """Wait for in-flight notifications (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
