"""Entry point for the mail trigger package.

Usage::

    python -m mail_trigger batch      # one aggregate event per tick
    python -m mail_trigger realtime   # one event per new email
    python -m mail_trigger check      # run a single batch tick and print it
"""

from __future__ import annotations

import asyncio
import sys

_MODES = ("batch", "realtime", "check")


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in _MODES:
        print(f"Usage: python -m mail_trigger <{'|'.join(_MODES)}>", file=sys.stderr)
        sys.exit(1)

    mode = sys.argv[1]

    if mode == "check":
        sys.exit(_check())

    from .config import TriggerSettings
    from .service import TriggerService

    settings = TriggerSettings(mode=mode)
    service = TriggerService(settings)
    asyncio.run(service.run())


def _check() -> int:
    from .config import MailboxSettings
    from .errors import MailTriggerError
    from .logging import setup_logging
    from .triggers import MailReceivedTrigger

    setup_logging(json=False, level="WARNING")
    trigger = MailReceivedTrigger(MailboxSettings().resolve)
    try:
        event = asyncio.run(trigger.evaluate())
    except MailTriggerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"error: unexpected {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    if event is not None:
        print(event.model_dump_json(by_alias=True, indent=2))
    return 0


if __name__ == "__main__":
    main()
