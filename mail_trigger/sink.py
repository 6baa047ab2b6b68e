"""Event sinks — where trigger events go once a tick has produced them."""

from __future__ import annotations

import abc

import httpx
import structlog
from pydantic import BaseModel

from .config import SinkConfig

logger = structlog.get_logger()


class EventSink(abc.ABC):
    """Delivers serialized trigger events to the workflow engine."""

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    @abc.abstractmethod
    async def send(self, event: BaseModel) -> None:
        """Deliver one event.  Raises on failure so the caller can retry."""


class LogSink(EventSink):
    """Writes each event to the log.  Used when no webhook is configured."""

    async def send(self, event: BaseModel) -> None:
        logger.info(
            "trigger_event",
            event_type=type(event).__name__,
            payload=event.model_dump(mode="json", by_alias=True),
        )


class WebhookSink(EventSink):
    """POSTs each event as JSON to a single webhook URL."""

    def __init__(self, config: SinkConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        logger.info("webhook_sink_started", url=self._config.webhook_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            logger.info("webhook_sink_stopped")

    async def send(self, event: BaseModel) -> None:
        """POST the event.  Raises :class:`httpx.HTTPStatusError` on non-2xx responses."""
        if self._client is None:
            raise AssertionError("Sink not started")

        response = await self._client.post(
            self._config.webhook_url,
            content=event.model_dump_json(by_alias=True),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        logger.debug(
            "event_delivered",
            event_type=type(event).__name__,
            status_code=response.status_code,
        )


def create_sink(config: SinkConfig) -> EventSink:
    if config.webhook_url:
        return WebhookSink(config)
    return LogSink()
