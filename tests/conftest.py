"""Shared test fixtures for the mail trigger test suite."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import format_datetime

import pytest

from mail_trigger.config import MailboxConfig, resolve_mailbox_config
from mail_trigger.connector import FetchedMessage, Mailbox, parse_message


@pytest.fixture
def imap_config() -> MailboxConfig:
    return resolve_mailbox_config(
        protocol="IMAP",
        host="imap.test.com",
        username="testuser",
        password="testpass",
        poll_interval=timedelta(seconds=60),
    )


@pytest.fixture
def pop3_config() -> MailboxConfig:
    return resolve_mailbox_config(
        protocol="POP3",
        host="pop.test.com",
        username="testuser",
        password="testpass",
    )


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    message_id: str | None = "<test-001@example.com>",
    date: str | None = "Sun, 01 Jun 2025 12:00:00 +0000",
    cc: str | None = None,
    bcc: str | None = None,
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    if message_id:
        msg["Message-ID"] = message_id
    if date:
        msg["Date"] = date
    if cc:
        msg["Cc"] = cc
    if bcc:
        msg["Bcc"] = bcc
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> bytes:
    """multipart/mixed wrapping a text+HTML alternative and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Message-ID"] = "<multi-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


def _build_inline_image_email() -> bytes:
    """Text body, an inline image without a filename, and one PDF attachment."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "With image"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg.attach(MIMEText("See the picture", "plain"))

    image = MIMEBase("image", "png")
    image.set_payload(b"\x89PNG\r\n\x1a\nfake")
    encoders.encode_base64(image)
    image.add_header("Content-Disposition", "inline")
    image.add_header("Content-ID", "<logo>")
    msg.attach(image)

    pdf = MIMEBase("application", "pdf")
    pdf.set_payload(b"%PDF-1.4 fake pdf content")
    encoders.encode_base64(pdf)
    pdf.add_header("Content-Disposition", "attachment", filename="x.pdf")
    msg.attach(pdf)
    return msg.as_bytes()


def _fetched(
    number: int,
    raw_bytes: bytes | None = None,
    *,
    received_at: datetime | None = None,
) -> FetchedMessage:
    raw = raw_bytes if raw_bytes is not None else _build_plain_email(
        subject=f"Message {number}", message_id=f"<msg-{number}@example.com>"
    )
    return FetchedMessage(number=number, received_at=received_at, message=parse_message(raw))


# ------------------------------------------------------------------
# In-memory mailbox
# ------------------------------------------------------------------


class FakeMailbox(Mailbox):
    """Mailbox backed by a list; records which message numbers were read.

    ``header_reads`` lists header-only reads, ``fetched`` full downloads.
    """

    def __init__(self, messages: list[FetchedMessage], *, fail_on: int | None = None) -> None:
        self.messages = messages
        self.fail_on = fail_on
        self.header_reads: list[int] = []
        self.fetched: list[int] = []
        self.closed = False

    def message_count(self) -> int:
        return len(self.messages)

    def fetch_headers(self, number: int) -> FetchedMessage:
        if number == self.fail_on:
            raise OSError(f"connection reset while reading {number}")
        self.header_reads.append(number)
        return self.messages[number - 1]

    def fetch(self, number: int) -> FetchedMessage:
        if number == self.fail_on:
            raise OSError(f"connection reset while reading {number}")
        self.fetched.append(number)
        return self.messages[number - 1]

    def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Stands in for MailboxConnector; hands out a fresh FakeMailbox per open."""

    def __init__(self, messages: list[FetchedMessage], *, fail_on: int | None = None) -> None:
        self._messages = messages
        self._fail_on = fail_on
        self.opened: list[FakeMailbox] = []

    @contextmanager
    def open(self, config: MailboxConfig) -> Iterator[Mailbox]:
        mailbox = FakeMailbox(self._messages, fail_on=self._fail_on)
        self.opened.append(mailbox)
        try:
            yield mailbox
        finally:
            mailbox.close()


def minutes_ago(minutes: float) -> datetime:
    return datetime.now(UTC) - timedelta(minutes=minutes)


@pytest.fixture
def first_email() -> FetchedMessage:
    """One message titled "First Email", sent five minutes ago."""
    sent = format_datetime(minutes_ago(5))
    raw = _build_plain_email(subject="First Email", date=sent, message_id="<first@example.com>")
    return FetchedMessage(number=1, received_at=None, message=parse_message(raw))

