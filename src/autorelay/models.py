"""Relay data models — workflows, trigger events, and pipeline payloads."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

ANY_ACCOUNT = "Any"


class SourceApp(StrEnum):
    """Closed set of apps a workflow can read from or deliver to."""

    GMAIL = "Gmail"
    TELEGRAM = "Telegram"
    MAPS = "Maps"
    PHOTOS = "Photos"

    @classmethod
    def parse(cls, tag: str | None) -> SourceApp | None:
        """Normalize a stored or inbound app tag.

        ``"Google"`` is an alias of Gmail.  Returns ``None`` for unknown tags.
        """
        if not tag:
            return None
        cleaned = tag.strip()
        if cleaned.lower() == "google":
            return cls.GMAIL
        for member in cls:
            if member.value.lower() == cleaned.lower():
                return member
        return None


class Transition(StrEnum):
    """Geofence transition kinds."""

    ENTER = "ENTER"
    EXIT = "EXIT"
    DWELL = "DWELL"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Workflow:
    """A persisted automation rule."""

    source: SourceApp
    destination: SourceApp
    source_account: str = ANY_ACCOUNT
    destination_account: str = ""
    instructions: str = ""
    id: str = ""
    geo_latitude: float | None = None
    geo_longitude: float | None = None
    geo_radius_meters: float | None = None
    geofence_id: str | None = None
    active: bool = True
    timestamp: int = field(default_factory=now_ms)
    photo_baseline_ts: int = 0
    photo_last_processed_ts: int = 0
    photo_bootstrap_count: int = 0
    photo_person_name: str = ""
    photo_person_embeddings: list[list[float]] = field(default_factory=list)

    @property
    def dedupe_key(self) -> tuple[str, str, str]:
        """Identity used when merging local and remote copies."""
        return (self.source.value, self.destination.value, self.instructions)

    @property
    def has_geofence(self) -> bool:
        return (
            self.geo_latitude is not None
            and self.geo_longitude is not None
            and self.geo_radius_meters is not None
        )

    @property
    def photo_gate_ts(self) -> int:
        """Photos at or before this timestamp were already accounted for."""
        return max(self.photo_baseline_ts, self.photo_last_processed_ts)

    @property
    def ref(self) -> str:
        """Short human-readable reference used in logs and execution records."""
        return self.id or f"{self.source.value}->{self.destination.value}"


@dataclass
class TriggerEvent:
    """Transient event produced by a trigger source."""

    source_app: SourceApp
    hint: str | None = None
    transition: Transition | None = None
    workflow: Workflow | None = None
    photo_path: str | None = None
    photo_ts: int | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class Attachment:
    """Binary payload forwarded alongside a message."""

    filename: str
    content_type: str
    data: bytes


@dataclass
class MessageContent:
    """Payload fetched (or synthesized) for one pipeline run."""

    id: str
    sender: str
    recipient: str
    subject: str
    body: str
    timestamp: int
    source: SourceApp | None = None


@dataclass
class ProcessedMessage:
    """Output of the rewrite step."""

    original: MessageContent
    processed_subject: str
    processed_body: str
    instructions: str
    attachment: Attachment | None = None


@dataclass
class ProcessingResult:
    """Terminal outcome of a dispatch."""

    success: bool
    message: str | None = None
    error: str | None = None

    @property
    def summary(self) -> str:
        return self.message or self.error or ""


@dataclass
class ExecutionRecord:
    """One audit-trail entry."""

    workflow_ref: str
    success: bool
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    workflow: dict[str, Any] = field(default_factory=dict)
