"""TriggerService — hosts one trigger, delivers its events, serves health."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import time
from datetime import UTC, datetime

import structlog
import uvicorn
from pydantic import BaseModel

from .config import TriggerSettings
from .errors import ConfigError, MailTriggerError
from .health import create_health_app
from .logging import setup_logging
from .models import ServiceStatus
from .retry import with_retry
from .sink import EventSink, create_sink
from .triggers import MailReceivedTrigger, RealTimeTrigger, TickStats

logger = structlog.get_logger()


class TriggerService:
    """Runs a batch or real-time mail trigger until shutdown.

    ``run()`` starts the following concurrently via
    :class:`asyncio.TaskGroup`:

    * the trigger loop (interval scheduler for batch mode, the timer
      stream for real-time mode)
    * a FastAPI health server

    Call ``asyncio.run(service.run())`` to start it.
    """

    def __init__(self, settings: TriggerSettings, *, sink: EventSink | None = None) -> None:
        self.settings = settings
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()
        self.events_emitted: int = 0
        self.events_dropped: int = 0

        self._sink = sink or create_sink(settings.sink)
        self._batch = MailReceivedTrigger(settings.mailbox.resolve)
        self._realtime = RealTimeTrigger(settings.mailbox.resolve)
        self._shutdown_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Event delivery with retry
    # ------------------------------------------------------------------

    async def _deliver(self, event: BaseModel) -> None:
        """Send one event; after the last failed attempt it is logged and dropped."""
        retry_decorator = with_retry(self.settings.retry)

        @retry_decorator
        async def _send() -> None:
            await self._sink.send(event)

        try:
            await _send()
        except Exception as exc:
            self.events_dropped += 1
            logger.error(
                "event_delivery_failed_permanently",
                event_type=type(event).__name__,
                error=str(exc),
                attempts=self.settings.retry.max_attempts,
            )
            return
        self.events_emitted += 1

    # ------------------------------------------------------------------
    # Trigger loops
    # ------------------------------------------------------------------

    async def _run_batch_loop(self) -> None:
        """Fixed-cadence scheduler; one tick at a time, never overlapping."""
        logger.info("batch_trigger_started", trigger=self.settings.name)
        self.status = ServiceStatus.RUNNING
        interval = self.settings.mailbox.poll_interval
        scheduled_at: datetime | None = None

        while not self._shutdown_event.is_set():
            fired_at = datetime.now(UTC)
            try:
                event = await self._batch.evaluate(scheduled_at)
            except ConfigError:
                self.status = ServiceStatus.DEGRADED
                logger.exception("batch_trigger_config_invalid", trigger=self.settings.name)
                raise
            except MailTriggerError as exc:
                logger.error("batch_tick_failed", trigger=self.settings.name, error=str(exc))
                event = None
            except Exception:
                logger.exception("batch_tick_failed", trigger=self.settings.name)
                event = None

            if event is not None:
                await self._deliver(event)

            scheduled_at = (scheduled_at or fired_at) + interval
            delay = max(0.0, (scheduled_at - datetime.now(UTC)).total_seconds())
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)

    async def _run_realtime_loop(self) -> None:
        logger.info("realtime_trigger_started", trigger=self.settings.name)
        self.status = ServiceStatus.RUNNING
        stream = self._realtime.stream()
        try:
            async for record in stream:
                await self._deliver(record)
        except ConfigError:
            self.status = ServiceStatus.DEGRADED
            logger.exception("realtime_trigger_config_invalid", trigger=self.settings.name)
            raise
        finally:
            await stream.aclose()

    async def _run_trigger(self) -> None:
        try:
            if self.settings.mode == "realtime":
                await self._run_realtime_loop()
            else:
                await self._run_batch_loop()
        finally:
            self._shutdown_event.set()
            logger.info("trigger_loop_stopped", trigger=self.settings.name)

    async def _stop_realtime_on_shutdown(self) -> None:
        await self._shutdown_event.wait()
        self._realtime.stop()

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    @property
    def stats(self) -> TickStats:
        """Tick counters of the trigger this service runs."""
        trigger = self._realtime if self.settings.mode == "realtime" else self._batch
        return trigger.stats

    def is_ready(self) -> bool:
        """Running, and the last few ticks did not all fail."""
        if self.status != ServiceStatus.RUNNING:
            return False
        return self.stats.consecutive_failures < self.settings.unready_after_failures

    def health_check(self) -> dict[str, object]:
        return {
            "mode": self.settings.mode,
            "mail_host": self.settings.mailbox.host,
            "mail_folder": self.settings.mailbox.folder,
            "events_emitted": self.events_emitted,
            "events_dropped": self.events_dropped,
            **self.stats.as_dict(),
        }

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.settings.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _handle(sig: signal.Signals) -> None:
            logger.info("shutdown_signal_received", signal=sig.name)
            self._shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _handle, sig)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start all subsystems and run until shutdown."""
        setup_logging(json=self.settings.log_json, level=self.settings.log_level)
        self._install_signal_handlers()
        self.start_time = time.monotonic()

        logger.info("trigger_service_starting", trigger=self.settings.name, mode=self.settings.mode)
        await self._sink.start()

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_trigger())
                tg.create_task(self._run_health_server())
                if self.settings.mode == "realtime":
                    tg.create_task(self._stop_realtime_on_shutdown())
        except* Exception:
            logger.exception("trigger_service_error", trigger=self.settings.name)
        finally:
            self.status = ServiceStatus.STOPPING
            await self._sink.stop()
            self.status = ServiceStatus.STOPPED
            logger.info("trigger_service_stopped", trigger=self.settings.name)
