"""MessageFetcher — "what is new since X" over the tail of a mailbox.

Only the last :data:`FETCH_WINDOW` messages by sequence number are
examined each tick.  A burst of more than ``FETCH_WINDOW`` messages
between two ticks therefore loses the oldest messages of the burst;
this is a known limitation, kept so each tick has bounded cost.

Dates come from a header-only read of each window message; full bodies
are downloaded only for messages that turn out to be new.
"""

from __future__ import annotations

import email.utils
from datetime import UTC, datetime
from email.message import Message

import structlog

from .connector import PROTOCOL_ERRORS, FetchedMessage, Mailbox
from .errors import FetchError
from .mime import MimeExtractor
from .models import EmailRecord

logger = structlog.get_logger()

FETCH_WINDOW = 10

_PREVIEW_LENGTH = 100


class MessageFetcher:
    """Stateless query: list every message in the tail window newer than *since*."""

    def __init__(self, extractor: MimeExtractor | None = None) -> None:
        self._extractor = extractor or MimeExtractor()

    def fetch_new(
        self,
        mailbox: Mailbox,
        since: datetime,
        *,
        now: datetime | None = None,
    ) -> list[EmailRecord]:
        """Return records for window messages dated strictly after *since*.

        Any server or MIME error aborts the whole call with
        :class:`FetchError`; no partial list is returned.
        """
        since = _as_utc(since)
        try:
            total = mailbox.message_count()
        except PROTOCOL_ERRORS as exc:
            raise FetchError(f"Could not count messages: {exc}") from exc

        if total == 0:
            logger.info("mailbox_empty")
            return []

        window = min(total, FETCH_WINDOW)
        first = total - window + 1
        logger.info("fetch_window", since=since.isoformat(), checking=window, total=total)

        records: list[EmailRecord] = []
        for number in range(first, total + 1):
            try:
                headers = mailbox.fetch_headers(number)
            except PROTOCOL_ERRORS as exc:
                raise FetchError(f"Could not read message {number}: {exc}") from exc

            timestamp = message_date(headers, now=now)
            logger.debug(
                "message_date_checked",
                number=number,
                date=timestamp.isoformat(),
                is_newer=timestamp > since,
            )
            if timestamp <= since:
                continue

            # only messages that are actually new have their body downloaded
            try:
                fetched = mailbox.fetch(number)
            except PROTOCOL_ERRORS as exc:
                raise FetchError(f"Could not read message {number}: {exc}") from exc

            record = self.build_record(fetched.message, timestamp)
            logger.info(
                "new_email",
                subject=record.subject,
                sender=record.from_address,
                body=_preview(record.body),
            )
            records.append(record)

        logger.info("new_emails_found", count=len(records))
        return records

    def build_record(self, message: Message, date: datetime) -> EmailRecord:
        try:
            content = self._extractor.extract(message)
            return EmailRecord(
                subject=_header(message, "Subject"),
                from_address=next(iter(_addresses(message, "From")), None),
                to=_addresses(message, "To"),
                cc=_addresses(message, "Cc"),
                bcc=_addresses(message, "Bcc"),
                date=date,
                body=content.body,
                message_id=_header(message, "Message-ID"),
                attachments=content.attachments,
            )
        except FetchError:
            raise
        except (ValueError, TypeError, LookupError) as exc:
            raise FetchError(f"Could not parse message: {exc}") from exc


def message_date(fetched: FetchedMessage, *, now: datetime | None = None) -> datetime:
    """Received date, falling back to the ``Date`` header, falling back to *now*."""
    if fetched.received_at is not None:
        return _as_utc(fetched.received_at)
    sent = sent_date(fetched.message)
    if sent is not None:
        return sent
    return _as_utc(now) if now is not None else datetime.now(UTC)


def sent_date(message: Message) -> datetime | None:
    try:
        value = message.get("Date")
        if not value:
            return None
        return _as_utc(email.utils.parsedate_to_datetime(str(value)))
    except (TypeError, ValueError, IndexError):
        return None


def _as_utc(value: datetime) -> datetime:
    # naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _header(message: Message, name: str) -> str | None:
    value = message.get(name)
    return str(value) if value is not None else None


def _addresses(message: Message, name: str) -> list[str]:
    values = message.get_all(name)
    if not values:
        return []
    return [addr for _, addr in email.utils.getaddresses([str(v) for v in values]) if addr]


def _preview(body: str) -> str:
    if len(body) > _PREVIEW_LENGTH:
        return body[:_PREVIEW_LENGTH] + "..."
    return body
