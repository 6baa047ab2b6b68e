"""Tests for mail_trigger.service."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest
from pydantic import BaseModel

from mail_trigger.config import MailboxSettings, RetryConfig, TriggerSettings
from mail_trigger.errors import ConfigError, FetchError
from mail_trigger.models import BatchEvent, EmailRecord, ServiceStatus
from mail_trigger.poll import BatchWindow, PollCycle, RealTimeWindow
from mail_trigger.service import TriggerService
from mail_trigger.sink import EventSink
from mail_trigger.triggers import MailReceivedTrigger, RealTimeTrigger

from tests.conftest import FakeConnector, _fetched, minutes_ago


class RecordingSink(EventSink):
    """Keeps every event; fails the first *failures* sends."""

    def __init__(self, failures: int = 0, on_send=None) -> None:
        self.events: list[BaseModel] = []
        self.failures = failures
        self.attempts = 0
        self._on_send = on_send

    async def send(self, event: BaseModel) -> None:
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise httpx.ConnectError("webhook unreachable")
        self.events.append(event)
        if self._on_send is not None:
            self._on_send()


def _settings(mode: str = "batch", **mailbox) -> TriggerSettings:
    values = {
        "host": "imap.test.com",
        "username": "testuser",
        "password": "testpass",
        "poll_interval": timedelta(milliseconds=50),
    }
    values.update(mailbox)
    return TriggerSettings(
        name="test-trigger",
        mode=mode,
        mailbox=MailboxSettings(**values),
        retry=RetryConfig(max_attempts=3, initial_wait_seconds=0, max_wait_seconds=0, multiplier=0),
    )


class _FailOnceCycle(PollCycle):
    def __init__(self, connector, error: Exception | None = None) -> None:
        super().__init__(BatchWindow(), connector=connector)
        self.error = error or FetchError("Could not read message 1: connection reset")
        self.failed = False

    def tick(self, config, **kwargs):
        if not self.failed:
            self.failed = True
            raise self.error
        return super().tick(config, **kwargs)


class TestDeliver:
    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        sink = RecordingSink(failures=2)
        service = TriggerService(_settings(), sink=sink)

        await service._deliver(BatchEvent.model_construct(total=0))

        assert sink.attempts == 3
        assert service.events_emitted == 1
        assert service.events_dropped == 0

    @pytest.mark.asyncio
    async def test_drops_after_last_attempt(self):
        sink = RecordingSink(failures=10)
        service = TriggerService(_settings(), sink=sink)

        await service._deliver(BatchEvent.model_construct(total=0))

        assert sink.attempts == 3
        assert service.events_emitted == 0
        assert service.events_dropped == 1


class TestBatchLoop:
    @pytest.mark.asyncio
    async def test_emits_once_for_first_email(self, first_email):
        sink = RecordingSink()
        service = TriggerService(_settings(), sink=sink)
        config = service.settings.mailbox.resolve()
        service._batch = MailReceivedTrigger(
            lambda: config,
            cycle=PollCycle(BatchWindow(), connector=FakeConnector([first_email])),
        )

        task = asyncio.create_task(service._run_trigger())
        await asyncio.sleep(0.2)
        service._shutdown_event.set()
        await asyncio.wait_for(task, timeout=5)

        assert len(sink.events) == 1
        event = sink.events[0]
        assert isinstance(event, BatchEvent)
        assert event.total == 1
        assert event.latest_email.subject == "First Email"
        assert service._batch.stats.ticks >= 2

    @pytest.mark.asyncio
    async def test_failed_tick_is_skipped(self):
        sink = RecordingSink()
        service = TriggerService(_settings(), sink=sink)
        config = service.settings.mailbox.resolve()
        connector = FakeConnector([_fetched(1, received_at=minutes_ago(-1))])
        service._batch = MailReceivedTrigger(lambda: config, cycle=_FailOnceCycle(connector))

        task = asyncio.create_task(service._run_trigger())
        await asyncio.sleep(0.2)
        service._shutdown_event.set()
        await asyncio.wait_for(task, timeout=5)

        assert service._batch.stats.failed_ticks == 1
        assert len(sink.events) >= 1
        assert service.status == ServiceStatus.RUNNING

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_the_loop(self):
        sink = RecordingSink()
        service = TriggerService(_settings(), sink=sink)
        config = service.settings.mailbox.resolve()
        connector = FakeConnector([_fetched(1, received_at=minutes_ago(-1))])
        cycle = _FailOnceCycle(
            connector, UnicodeEncodeError("ascii", "pässwörd", 1, 2, "ordinal not in range(128)")
        )
        service._batch = MailReceivedTrigger(lambda: config, cycle=cycle)

        task = asyncio.create_task(service._run_trigger())
        await asyncio.sleep(0.2)
        assert not task.done()
        service._shutdown_event.set()
        await asyncio.wait_for(task, timeout=5)

        assert service._batch.stats.failed_ticks == 1
        assert service._batch.stats.ticks >= 2
        assert len(sink.events) >= 1

    @pytest.mark.asyncio
    async def test_config_error_degrades(self):
        service = TriggerService(_settings(host=None), sink=RecordingSink())

        with pytest.raises(ConfigError):
            await service._run_trigger()
        assert service.status == ServiceStatus.DEGRADED
        assert service._shutdown_event.is_set()


class TestRealtimeLoop:
    @pytest.mark.asyncio
    async def test_delivers_records_until_shutdown(self):
        service = TriggerService(_settings(mode="realtime"))
        sink = RecordingSink(on_send=service._shutdown_event.set)
        service._sink = sink
        config = service.settings.mailbox.resolve()
        service._realtime = RealTimeTrigger(
            lambda: config,
            cycle=PollCycle(
                RealTimeWindow(),
                connector=FakeConnector([_fetched(1, received_at=minutes_ago(-1))]),
            ),
        )

        await asyncio.wait_for(
            asyncio.gather(service._run_trigger(), service._stop_realtime_on_shutdown()),
            timeout=5,
        )

        assert len(sink.events) >= 1
        assert isinstance(sink.events[0], EmailRecord)
        assert service.events_emitted == len(sink.events)


class TestHealthCheck:
    def test_details(self):
        service = TriggerService(_settings())
        details = service.health_check()
        assert details["mode"] == "batch"
        assert details["mail_host"] == "imap.test.com"
        assert details["mail_folder"] == "INBOX"
        assert details["events_dropped"] == 0
        assert details["failed_ticks"] == 0
