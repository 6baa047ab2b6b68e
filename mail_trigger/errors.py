"""Exception taxonomy for mailbox polling.

Every error raised by a poll tick is a :class:`MailTriggerError`, so
callers can distinguish "this tick failed" from programming errors.
"""

from __future__ import annotations


class MailTriggerError(Exception):
    """Base class for all mail trigger failures."""


class ConfigError(MailTriggerError):
    """A required mailbox setting is missing or cannot be parsed."""


class MailboxConnectionError(MailTriggerError):
    """The mail server could not be reached or rejected the credentials."""


class FolderError(MailboxConnectionError):
    """The configured IMAP folder is missing or cannot be opened."""


class FetchError(MailTriggerError):
    """Listing, reading, or parsing messages failed after connecting."""
