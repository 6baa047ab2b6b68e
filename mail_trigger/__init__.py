"""Mail trigger — poll an IMAP or POP3 mailbox and turn new email into events.

Public API re-exported here for convenience::

    from mail_trigger import MailReceivedTrigger, RealTimeTrigger, resolve_mailbox_config
"""

from .config import (
    MailboxConfig,
    MailboxSettings,
    RetryConfig,
    SinkConfig,
    TriggerSettings,
    resolve_mailbox_config,
)
from .connector import Mailbox, MailboxConnector
from .errors import (
    ConfigError,
    FetchError,
    FolderError,
    MailboxConnectionError,
    MailTriggerError,
)
from .fetcher import FETCH_WINDOW, MessageFetcher
from .mime import ExtractedContent, MimeExtractor
from .models import AttachmentInfo, BatchEvent, EmailRecord, PollResult
from .poll import BatchWindow, PollCycle, RealTimeWindow, WindowPolicy
from .protocol import Protocol, default_port, transport_name
from .service import TriggerService
from .sink import EventSink, LogSink, WebhookSink
from .triggers import MailReceivedTrigger, RealTimeTrigger

__all__ = [
    "FETCH_WINDOW",
    "AttachmentInfo",
    "BatchEvent",
    "BatchWindow",
    "ConfigError",
    "EmailRecord",
    "EventSink",
    "ExtractedContent",
    "FetchError",
    "FolderError",
    "LogSink",
    "MailReceivedTrigger",
    "MailTriggerError",
    "Mailbox",
    "MailboxConfig",
    "MailboxConnectionError",
    "MailboxConnector",
    "MailboxSettings",
    "MessageFetcher",
    "MimeExtractor",
    "PollCycle",
    "PollResult",
    "Protocol",
    "RealTimeTrigger",
    "RealTimeWindow",
    "RetryConfig",
    "SinkConfig",
    "TriggerService",
    "WebhookSink",
    "WindowPolicy",
    "default_port",
    "resolve_mailbox_config",
    "transport_name",
]
