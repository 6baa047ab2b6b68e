"""Async trigger front-ends over :class:`PollCycle`.

Each tick resolves its :class:`MailboxConfig` afresh and runs the
blocking poll in a worker thread with ``asyncio.to_thread()`` so the
event loop is never blocked by imaplib / poplib.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from .config import MailboxConfig
from .errors import ConfigError
from .models import BatchEvent, EmailRecord
from .poll import BatchWindow, PollCycle, RealTimeWindow

logger = structlog.get_logger()

ConfigSource = Callable[[], MailboxConfig]


@dataclass
class TickStats:
    """Counters reported by the health endpoint."""

    ticks: int = 0
    failed_ticks: int = 0
    consecutive_failures: int = 0
    emails_found: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None

    def record_success(self, emails: int) -> None:
        self.ticks += 1
        self.consecutive_failures = 0
        self.emails_found += emails
        self.last_tick_at = datetime.now(UTC)

    def record_failure(self, exc: BaseException) -> None:
        self.ticks += 1
        self.failed_ticks += 1
        self.consecutive_failures += 1
        self.last_tick_at = datetime.now(UTC)
        self.last_error = f"{type(exc).__name__}: {exc}"

    def as_dict(self) -> dict[str, object]:
        return {
            "ticks": self.ticks,
            "failed_ticks": self.failed_ticks,
            "consecutive_failures": self.consecutive_failures,
            "emails_found": self.emails_found,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_error": self.last_error,
        }


class MailReceivedTrigger:
    """Batch trigger: one aggregate event per tick that found new mail.

    Ticks are expected to be serialized by the caller's scheduler.
    Errors propagate so the scheduler can log them and skip the tick.
    """

    def __init__(self, config_source: ConfigSource, *, cycle: PollCycle | None = None) -> None:
        self._config_source = config_source
        self._cycle = cycle or PollCycle(BatchWindow())
        self.stats = TickStats()

    async def evaluate(self, next_fire_at: datetime | None = None) -> BatchEvent | None:
        """Run one tick; ``next_fire_at`` is the scheduled time of this tick.

        Returns ``None`` when no new email was found.
        """
        config = self._config_source()
        try:
            events = await asyncio.to_thread(self._cycle.tick, config, next_fire_at=next_fire_at)
        except Exception as exc:
            self.stats.record_failure(exc)
            raise

        if not events:
            self.stats.record_success(0)
            return None
        event = events[0]
        self.stats.record_success(event.total)
        return event


_STOP = object()


class RealTimeTrigger:
    """Real-time trigger: one event per new email.

    A fixed-interval timer starts a tick every ``poll_interval``, whether
    or not the previous tick has finished; each tick uses its own
    connection.  Tick failures are logged and the timer keeps going.  A
    :class:`ConfigError` ends the stream.
    """

    def __init__(self, config_source: ConfigSource, *, cycle: PollCycle | None = None) -> None:
        self._config_source = config_source
        self._cycle = cycle or PollCycle(RealTimeWindow())
        self._stopped = asyncio.Event()
        self.stats = TickStats()

    def stop(self) -> None:
        """Stop starting new ticks and end the stream.  Non-blocking."""
        self._stopped.set()

    async def stream(self) -> AsyncIterator[EmailRecord]:
        config = self._config_source()
        interval = config.poll_interval.total_seconds()
        logger.info(
            "realtime_monitoring_started",
            protocol=config.protocol.value,
            host=config.host,
            port=config.port,
            interval_seconds=interval,
        )

        queue: asyncio.Queue[object] = asyncio.Queue()
        timer = asyncio.create_task(self._run_timer(queue, interval))
        try:
            while True:
                item = await queue.get()
                if item is _STOP:
                    break
                if isinstance(item, ConfigError):
                    raise item
                yield item  # type: ignore[misc]
        finally:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
            logger.info("realtime_monitoring_stopped", host=config.host)

    async def _run_timer(self, queue: asyncio.Queue[object], interval: float) -> None:
        pending: set[asyncio.Task[None]] = set()
        try:
            while not self._stopped.is_set():
                task = asyncio.create_task(self._tick(queue))
                pending.add(task)
                task.add_done_callback(pending.discard)
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stopped.wait(), timeout=interval)
        finally:
            for task in pending:
                task.cancel()
            queue.put_nowait(_STOP)

    async def _tick(self, queue: asyncio.Queue[object]) -> None:
        try:
            config = self._config_source()
        except ConfigError as exc:
            self.stats.record_failure(exc)
            queue.put_nowait(exc)
            return

        try:
            records = await asyncio.to_thread(self._cycle.tick, config)
        except Exception as exc:
            self.stats.record_failure(exc)
            logger.exception("realtime_tick_failed", host=config.host, error=str(exc))
            return

        self.stats.record_success(len(records))
        for record in records:
            logger.info(
                "realtime_email_received",
                sender=record.from_address,
                subject=record.subject,
            )
            queue.put_nowait(record)
