"""PollCycle — one connect / fetch / close round trip per tick.

The two trigger cadences share the same cycle and differ only in their
:class:`WindowPolicy`: how the ``since`` reference is computed and how
a :class:`PollResult` is fanned out into events.
"""

from __future__ import annotations

import abc
from datetime import UTC, datetime, timedelta

import structlog

from .config import MailboxConfig
from .connector import MailboxConnector
from .fetcher import MessageFetcher
from .models import BatchEvent, EmailRecord, PollResult

logger = structlog.get_logger()

# Batch look-back when the scheduler has no previous fire time.
FIRST_RUN_LOOKBACK = timedelta(hours=1)

# Real-time ticks look back this many intervals, so a slow tick cannot
# leave a gap before the next one.
REALTIME_OVERLAP_FACTOR = 2


class WindowPolicy(abc.ABC):
    """Decides the ``since`` reference for a tick and the events it yields."""

    mode: str

    @abc.abstractmethod
    def since(
        self,
        interval: timedelta,
        *,
        now: datetime,
        next_fire_at: datetime | None = None,
    ) -> datetime:
        """Only messages dated strictly after this instant are new."""

    @abc.abstractmethod
    def fan_out(self, result: PollResult) -> list[BatchEvent] | list[EmailRecord]:
        """Turn one tick's result into zero or more events."""


class BatchWindow(WindowPolicy):
    """At most one aggregate event per tick."""

    mode = "batch"

    def since(
        self,
        interval: timedelta,
        *,
        now: datetime,
        next_fire_at: datetime | None = None,
    ) -> datetime:
        if next_fire_at is None:
            return now - FIRST_RUN_LOOKBACK
        return next_fire_at - interval

    def fan_out(self, result: PollResult) -> list[BatchEvent]:
        latest = result.latest
        if latest is None:
            return []
        return [
            BatchEvent(
                latest_email=latest,
                total=result.count,
                all_new_emails=list(result.records),
            )
        ]


class RealTimeWindow(WindowPolicy):
    """One event per new email."""

    mode = "realtime"

    def since(
        self,
        interval: timedelta,
        *,
        now: datetime,
        next_fire_at: datetime | None = None,
    ) -> datetime:
        return now - REALTIME_OVERLAP_FACTOR * interval

    def fan_out(self, result: PollResult) -> list[EmailRecord]:
        return list(result.records)


class PollCycle:
    """Runs a blocking poll tick with a fresh connection every time.

    Nothing is cached between ticks, so concurrent ticks on different
    threads never share a mailbox handle.
    """

    def __init__(
        self,
        policy: WindowPolicy,
        *,
        connector: MailboxConnector | None = None,
        fetcher: MessageFetcher | None = None,
    ) -> None:
        self.policy = policy
        self._connector = connector or MailboxConnector()
        self._fetcher = fetcher or MessageFetcher()

    def poll(self, config: MailboxConfig, since: datetime, *, now: datetime | None = None) -> PollResult:
        """Connect, list messages newer than *since*, and disconnect."""
        with self._connector.open(config) as mailbox:
            records = self._fetcher.fetch_new(mailbox, since, now=now)
        return PollResult(records=records)

    def tick(
        self,
        config: MailboxConfig,
        *,
        now: datetime | None = None,
        next_fire_at: datetime | None = None,
    ) -> list[BatchEvent] | list[EmailRecord]:
        """One full tick: compute ``since``, poll, fan out into events."""
        now = now or datetime.now(UTC)
        since = self.policy.since(config.poll_interval, now=now, next_fire_at=next_fire_at)
        logger.info(
            "poll_tick",
            mode=self.policy.mode,
            host=config.host,
            folder=config.folder,
            since=since.isoformat(),
        )
        result = self.poll(config, since, now=now)
        return self.policy.fan_out(result)
