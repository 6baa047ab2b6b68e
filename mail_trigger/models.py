"""Data models for extracted emails, poll results and trigger events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

_EVENT_MODEL_CONFIG = {
    "frozen": True,
    "alias_generator": to_camel,
    "populate_by_name": True,
}


class AttachmentInfo(BaseModel):
    """Metadata for one attachment part; the payload itself is never read."""

    model_config = _EVENT_MODEL_CONFIG

    filename: str | None = Field(default=None, description="Attachment filename, if any")
    content_type: str = Field(description="MIME type of the part")
    size: int = Field(description="Size in bytes of the part body as stored in the message")


class EmailRecord(BaseModel):
    """One newly observed email, extracted once and never mutated."""

    model_config = _EVENT_MODEL_CONFIG

    subject: str | None = None
    from_address: str | None = Field(default=None, alias="from", description="Sender address")
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    date: datetime = Field(description="Received date, else sent date, else time of the poll")
    body: str = ""
    message_id: str | None = None
    attachments: list[AttachmentInfo] = Field(default_factory=list)


class PollResult(BaseModel):
    """Records found by one poll tick, in the order they were visited."""

    model_config = {"frozen": True}

    records: list[EmailRecord] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def latest(self) -> EmailRecord | None:
        """The record with the greatest date; the first one seen wins ties."""
        if not self.records:
            return None
        return max(self.records, key=lambda record: record.date)


class BatchEvent(BaseModel):
    """Aggregate payload emitted by a batch tick that found new mail."""

    model_config = _EVENT_MODEL_CONFIG

    latest_email: EmailRecord
    total: int
    all_new_emails: list[EmailRecord]


class ServiceStatus(str, Enum):
    """Runtime status of a trigger service."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


class HealthStatus(BaseModel):
    """Response model for the /health probe endpoint."""

    trigger_name: str = Field(description="Name of the trigger instance")
    status: ServiceStatus = Field(description="Current service status")
    uptime_seconds: float = Field(description="Seconds since the service started")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Polling details (mode, last tick time, counters, last error)",
    )
