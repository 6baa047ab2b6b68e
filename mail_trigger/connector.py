"""Mailbox connections over stdlib imaplib / poplib.

:meth:`MailboxConnector.open` is the only way to obtain a mailbox
handle; it is a context manager, so the folder and the server session
are closed on every exit path, including fetch errors.
"""

from __future__ import annotations

import abc
import email
import email.policy
import imaplib
import poplib
import ssl
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from email.message import Message

import structlog

from .config import MailboxConfig
from .errors import FetchError, FolderError, MailboxConnectionError
from .protocol import Protocol, transport_name

logger = structlog.get_logger()

PROTOCOL_ERRORS: tuple[type[BaseException], ...] = (
    imaplib.IMAP4.error,
    poplib.error_proto,
    OSError,
)

# imaplib encodes LOGIN arguments as ASCII and raises UnicodeEncodeError
LOGIN_ERRORS: tuple[type[BaseException], ...] = (*PROTOCOL_ERRORS, ValueError)


@dataclass
class FetchedMessage:
    """One message read from the server."""

    number: int
    received_at: datetime | None
    message: Message


def parse_message(raw_bytes: bytes) -> Message:
    return email.message_from_bytes(raw_bytes, policy=email.policy.default)


class Mailbox(abc.ABC):
    """An authenticated, read-only view of one folder or POP3 maildrop."""

    @abc.abstractmethod
    def message_count(self) -> int:
        """Total number of messages, numbered 1..N."""

    @abc.abstractmethod
    def fetch_headers(self, number: int) -> FetchedMessage:
        """Read only the received date and the header block of message *number*.

        Cheap enough to run for every message in the window; the body is
        not transferred.
        """

    @abc.abstractmethod
    def fetch(self, number: int) -> FetchedMessage:
        """Read all of message *number* without changing its state on the server."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the folder and the server session.  Never raises."""


class ImapMailbox(Mailbox):
    """IMAP folder opened with EXAMINE (read-only)."""

    def __init__(self, conn: imaplib.IMAP4, folder: str, count: int) -> None:
        self._conn = conn
        self._folder = folder
        self._count = count

    @classmethod
    def open(cls, conn: imaplib.IMAP4, folder: str) -> ImapMailbox:
        """Select *folder* read-only; logs out and raises :class:`FolderError` on failure."""
        try:
            status, data = conn.select(_quote_mailbox(folder), readonly=True)
            if status != "OK":
                raise FolderError(f"Cannot open folder {folder!r}: {_response_text(data)}")
            count = int(data[0] or 0)
        except FolderError:
            _logout_quietly(conn)
            raise
        except (*PROTOCOL_ERRORS, ValueError) as exc:
            _logout_quietly(conn)
            raise FolderError(f"Cannot open folder {folder!r}: {exc}") from exc
        return cls(conn, folder, count)

    def message_count(self) -> int:
        return self._count

    def fetch_headers(self, number: int) -> FetchedMessage:
        return self._fetch(number, "(INTERNALDATE BODY.PEEK[HEADER.FIELDS (DATE)])")

    def fetch(self, number: int) -> FetchedMessage:
        return self._fetch(number, "(INTERNALDATE BODY.PEEK[])")

    def _fetch(self, number: int, items: str) -> FetchedMessage:
        # BODY.PEEK leaves \Seen untouched
        status, data = self._conn.fetch(str(number), items)
        if status != "OK":
            raise FetchError(f"IMAP FETCH {number} failed: {_response_text(data)}")

        raw_bytes: bytes | None = None
        response_text = b""
        for item in data or []:
            if isinstance(item, tuple):
                response_text += item[0]
                raw_bytes = item[1]
            elif isinstance(item, bytes):
                response_text += item
        if raw_bytes is None:
            raise FetchError(f"IMAP FETCH {number} returned no message body")

        return FetchedMessage(
            number=number,
            received_at=_internal_date(response_text),
            message=parse_message(raw_bytes),
        )

    def close(self) -> None:
        try:
            self._conn.close()
        except PROTOCOL_ERRORS as exc:
            logger.warning("mail_folder_close_failed", folder=self._folder, error=str(exc))
        _logout_quietly(self._conn)


class Pop3Mailbox(Mailbox):
    """The single POP3 maildrop.  POP3 has no received date."""

    def __init__(self, conn: poplib.POP3) -> None:
        self._conn = conn

    def message_count(self) -> int:
        count, _size = self._conn.stat()
        return count

    def fetch_headers(self, number: int) -> FetchedMessage:
        # TOP is optional in POP3; servers without it get a full RETR
        try:
            _response, lines, _octets = self._conn.top(number, 0)
        except poplib.error_proto as exc:
            logger.debug("pop3_top_unsupported", number=number, error=str(exc))
            return self.fetch(number)
        return _pop3_message(number, lines)

    def fetch(self, number: int) -> FetchedMessage:
        _response, lines, _octets = self._conn.retr(number)
        return _pop3_message(number, lines)

    def close(self) -> None:
        try:
            self._conn.quit()
        except PROTOCOL_ERRORS as exc:
            logger.warning("mail_store_close_failed", error=str(exc))


def _pop3_message(number: int, lines: list[bytes]) -> FetchedMessage:
    raw_bytes = b"\r\n".join(lines) + b"\r\n"
    return FetchedMessage(number=number, received_at=None, message=parse_message(raw_bytes))


class MailboxConnector:
    """Opens authenticated mailboxes for a :class:`MailboxConfig`."""

    @contextmanager
    def open(self, config: MailboxConfig) -> Iterator[Mailbox]:
        """Connect, log in and (IMAP) select the folder; always close on exit."""
        mailbox = self.connect(config)
        try:
            yield mailbox
        finally:
            mailbox.close()
            logger.debug("mailbox_closed", host=config.host)

    def connect(self, config: MailboxConfig) -> Mailbox:
        transport = transport_name(config.protocol, config.use_tls)
        try:
            conn = self._authenticate(config, explicit_port=True)
        except LOGIN_ERRORS as exc:
            # Some servers refuse the explicit host/port pair but accept the
            # transport's standard port, so there is exactly one more attempt.
            logger.warning(
                "mailbox_login_retry",
                transport=transport,
                host=config.host,
                port=config.port,
                error=str(exc),
            )
            try:
                conn = self._authenticate(config, explicit_port=False)
            except LOGIN_ERRORS as retry_exc:
                raise MailboxConnectionError(
                    f"Could not connect to {transport}://{config.host}:{config.port}: {retry_exc}"
                ) from retry_exc

        logger.info(
            "mailbox_connected",
            transport=transport,
            host=config.host,
            port=config.port,
        )

        if config.protocol is Protocol.IMAP:
            return ImapMailbox.open(conn, config.folder)
        return Pop3Mailbox(conn)

    def _authenticate(
        self, config: MailboxConfig, *, explicit_port: bool
    ) -> imaplib.IMAP4 | poplib.POP3:
        kwargs: dict[str, object] = {"timeout": config.timeout_seconds}
        if explicit_port:
            kwargs["port"] = config.port
        password = config.password.get_secret_value()

        if config.protocol is Protocol.IMAP:
            if config.use_tls:
                imap: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                    config.host, ssl_context=build_ssl_context(config), **kwargs
                )
            else:
                imap = imaplib.IMAP4(config.host, **kwargs)
            try:
                imap.login(config.username, password)
            except LOGIN_ERRORS:
                _shutdown_quietly(imap)
                raise
            return imap

        if config.use_tls:
            pop: poplib.POP3 = poplib.POP3_SSL(
                config.host, context=build_ssl_context(config), **kwargs
            )
        else:
            pop = poplib.POP3(config.host, **kwargs)
        try:
            pop.user(config.username)
            pop.pass_(password)
        except LOGIN_ERRORS:
            _shutdown_quietly(pop)
            raise
        return pop


def build_ssl_context(config: MailboxConfig) -> ssl.SSLContext:
    """TLS 1.2+ client context.

    With ``trust_all_certificates`` the context accepts any certificate
    for any host name.  That is unsafe and only meant for test servers
    with self-signed certificates.
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    if config.trust_all_certificates:
        logger.warning("tls_verification_disabled", host=config.host)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _quote_mailbox(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _internal_date(response_text: bytes) -> datetime | None:
    parsed = imaplib.Internaldate2tuple(response_text)
    if parsed is None:
        return None
    return datetime.fromtimestamp(time.mktime(parsed), tz=UTC)


def _response_text(data: list | None) -> str:
    if not data:
        return ""
    first = data[0]
    if isinstance(first, bytes):
        return first.decode(errors="replace")
    return str(first)


def _logout_quietly(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except PROTOCOL_ERRORS as exc:
        logger.warning("mail_store_close_failed", error=str(exc))


def _shutdown_quietly(conn: imaplib.IMAP4 | poplib.POP3) -> None:
    try:
        if isinstance(conn, poplib.POP3):
            conn.close()
        else:
            conn.shutdown()
    except OSError:
        pass
