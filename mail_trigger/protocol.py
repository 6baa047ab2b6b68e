"""Protocol defaults: transport names and well-known ports."""

from __future__ import annotations

from enum import Enum


class Protocol(str, Enum):
    """Mailbox access protocol."""

    IMAP = "IMAP"
    POP3 = "POP3"


_DEFAULT_PORTS: dict[tuple[Protocol, bool], int] = {
    (Protocol.IMAP, True): 993,
    (Protocol.IMAP, False): 143,
    (Protocol.POP3, True): 995,
    (Protocol.POP3, False): 110,
}


def default_port(protocol: Protocol, use_tls: bool) -> int:
    """Return the IANA port for *protocol* with implicit TLS on or off."""
    return _DEFAULT_PORTS[(Protocol(protocol), bool(use_tls))]


def transport_name(protocol: Protocol, use_tls: bool) -> str:
    """Return the transport scheme (``imaps``, ``imap``, ``pop3s``, ``pop3``)."""
    name = Protocol(protocol).value.lower()
    return f"{name}s" if use_tls else name
