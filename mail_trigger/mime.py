"""MIME extraction — walks a message tree and collects body text and
attachment metadata.

The walk is a plain depth-first recursion that returns what it finds
rather than appending to shared accumulators, so nested structures can
be tested in isolation.  No payload of an attachment is ever decoded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from email.message import Message

from .errors import FetchError
from .models import AttachmentInfo

TEXT_TYPES = frozenset({"text/plain", "text/html"})

# Size reported for parts whose body is itself a MIME tree (for example
# an attached multipart or message/rfc822).
UNKNOWN_SIZE = -1


@dataclass(frozen=True)
class ExtractedContent:
    """Body text and attachments found in one message."""

    body: str
    attachments: list[AttachmentInfo] = field(default_factory=list)


class MimeExtractor:
    """Stateless walker: parsed message → :class:`ExtractedContent`.

    Text parts (``text/plain`` and ``text/html``) are concatenated in
    part order.  A part counts as an attachment when its disposition is
    ``attachment`` or it carries a filename; attachments never contribute
    to the body.  The message root is never treated as an attachment.
    """

    def extract(self, message: Message) -> ExtractedContent:
        if message.get_content_maintype() == "multipart":
            texts, attachments = self._walk_multipart(message)
            return ExtractedContent(body="".join(texts), attachments=attachments)
        return ExtractedContent(body=self._text_of(message))

    def _walk_multipart(self, part: Message) -> tuple[list[str], list[AttachmentInfo]]:
        if not part.is_multipart():
            raise FetchError(
                f"Malformed {part.get_content_type()} part: sub-parts could not be parsed"
            )

        texts: list[str] = []
        attachments: list[AttachmentInfo] = []
        for child in part.get_payload():
            if is_attachment(child):
                attachments.append(attachment_info(child))
            elif child.get_content_maintype() == "multipart":
                child_texts, child_attachments = self._walk_multipart(child)
                texts.extend(child_texts)
                attachments.extend(child_attachments)
            else:
                texts.append(self._text_of(child))
        return texts, attachments

    def _text_of(self, part: Message) -> str:
        """Decoded text of a text/plain or text/html leaf; empty otherwise."""
        if part.get_content_type() not in TEXT_TYPES:
            return ""
        payload = part.get_payload(decode=True)
        if not payload:
            return ""
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError as exc:
            raise FetchError(f"Unknown charset {charset!r} in {part.get_content_type()} part") from exc


def is_attachment(part: Message) -> bool:
    """True for parts with ``attachment`` disposition or a non-empty filename."""
    if part.get_content_disposition() == "attachment":
        return True
    return bool(part.get_filename())


def attachment_info(part: Message) -> AttachmentInfo:
    return AttachmentInfo(
        filename=part.get_filename() or None,
        content_type=part.get_content_type(),
        size=_stored_size(part),
    )


def _stored_size(part: Message) -> int:
    """Byte length of the part body as transferred, without decoding it."""
    payload = part.get_payload(decode=False)
    if isinstance(payload, str):
        return len(payload.encode("utf-8", "surrogateescape"))
    if isinstance(payload, bytes):
        return len(payload)
    return UNKNOWN_SIZE
