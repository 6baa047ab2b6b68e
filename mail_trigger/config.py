"""Mailbox and service configuration.

Settings are loaded from environment variables with pydantic-settings.
A :class:`MailboxConfig` is the validated, immutable view of the mailbox
settings that a single poll tick works from; it is resolved fresh for
every tick via :func:`resolve_mailbox_config`.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings

from .errors import ConfigError
from .protocol import Protocol, default_port

DEFAULT_POLL_INTERVAL = timedelta(seconds=60)


class MailboxConfig(BaseModel):
    """Resolved connection parameters for one poll tick."""

    model_config = {"frozen": True}

    protocol: Protocol
    host: str
    port: int = Field(gt=0, lt=65536)
    username: str
    password: SecretStr
    folder: str = "INBOX"
    use_tls: bool = True
    trust_all_certificates: bool = False
    poll_interval: timedelta = DEFAULT_POLL_INTERVAL
    timeout_seconds: float = Field(default=30.0, gt=0)


def _parse_protocol(value: Protocol | str | None) -> Protocol:
    if value is None or value == "":
        return Protocol.IMAP
    if isinstance(value, Protocol):
        return value
    try:
        return Protocol(str(value).strip().upper())
    except ValueError:
        raise ConfigError(f"Unsupported mail protocol: {value!r}") from None


def resolve_mailbox_config(
    *,
    host: str | None,
    username: str | None,
    password: str | SecretStr | None,
    protocol: Protocol | str | None = Protocol.IMAP,
    port: int | None = None,
    folder: str | None = None,
    use_tls: bool | None = None,
    trust_all_certificates: bool | None = None,
    poll_interval: timedelta | None = None,
    timeout_seconds: float | None = None,
) -> MailboxConfig:
    """Validate caller-supplied values and fill in defaults.

    Raises :class:`ConfigError` if host, username or password is missing,
    if the protocol is not IMAP or POP3, or if any value fails validation.
    When *port* is omitted it is derived from the protocol and TLS flag.
    """
    secret = password.get_secret_value() if isinstance(password, SecretStr) else password
    missing = [
        name
        for name, value in (("host", host), ("username", username), ("password", secret))
        if not value
    ]
    if missing:
        raise ConfigError(f"Missing required mailbox setting(s): {', '.join(missing)}")

    rprotocol = _parse_protocol(protocol)
    rtls = True if use_tls is None else use_tls
    if poll_interval is not None and poll_interval <= timedelta(0):
        raise ConfigError("poll_interval must be positive")

    values: dict[str, object] = {
        "protocol": rprotocol,
        "host": host,
        "port": port if port is not None else default_port(rprotocol, rtls),
        "username": username,
        "password": secret,
        "folder": folder or "INBOX",
        "use_tls": rtls,
        "trust_all_certificates": bool(trust_all_certificates),
        "poll_interval": poll_interval or DEFAULT_POLL_INTERVAL,
    }
    if timeout_seconds is not None:
        values["timeout_seconds"] = timeout_seconds

    try:
        return MailboxConfig(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid mailbox configuration: {exc}") from exc


class MailboxSettings(BaseSettings):
    """Raw mailbox inputs, possibly incomplete until resolved."""

    model_config = {"env_prefix": "MAIL_"}

    protocol: str = Field(default="IMAP", description="Mail access protocol (IMAP or POP3)")
    host: str | None = Field(default=None, description="Mail server hostname")
    port: int | None = Field(
        default=None,
        description="Server port; defaults to 993/143 (IMAP) or 995/110 (POP3)",
    )
    username: str | None = Field(default=None, description="Login username")
    password: SecretStr | None = Field(default=None, description="Login password")
    folder: str = Field(default="INBOX", description="IMAP folder to watch (ignored for POP3)")
    use_tls: bool = Field(default=True, description="Use implicit TLS (imaps/pop3s)")
    trust_all_certificates: bool = Field(
        default=False,
        description="Disable certificate and hostname checks. Unsafe, for self-signed test servers only",
    )
    poll_interval: timedelta = Field(
        default=DEFAULT_POLL_INTERVAL,
        description="Polling interval (seconds or ISO-8601 duration such as PT30S)",
    )
    timeout_seconds: float = Field(default=30.0, description="Socket timeout for server calls")

    def resolve(self) -> MailboxConfig:
        """Build the immutable :class:`MailboxConfig` for one tick."""
        return resolve_mailbox_config(
            protocol=self.protocol,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            folder=self.folder,
            use_tls=self.use_tls,
            trust_all_certificates=self.trust_all_certificates,
            poll_interval=self.poll_interval,
            timeout_seconds=self.timeout_seconds,
        )


class SinkConfig(BaseSettings):
    """Where trigger events are delivered."""

    model_config = {"env_prefix": "SINK_"}

    webhook_url: str = Field(
        default="",
        description="URL that receives one JSON POST per event; empty logs events instead",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class RetryConfig(BaseSettings):
    """Retry / backoff settings for event delivery, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=5, description="Maximum delivery attempts per event")
    initial_wait_seconds: float = Field(
        default=1.0,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=60.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class TriggerSettings(BaseSettings):
    """Root configuration for a trigger process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "TRIGGER_"}

    name: str = Field(default="mail-trigger", description="Trigger instance name")
    mode: Literal["batch", "realtime"] = Field(
        default="batch",
        description="batch: one aggregate event per tick; realtime: one event per email",
    )
    health_port: int = Field(default=8080, description="Port for health probe endpoints")
    unready_after_failures: int = Field(
        default=3,
        gt=0,
        description="/ready reports 503 after this many consecutive failed ticks",
    )
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    mailbox: MailboxSettings = Field(default_factory=MailboxSettings)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
