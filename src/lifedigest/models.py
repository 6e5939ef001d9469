"""Core lifedigest data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, sortable as text."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DigestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (DigestStatus.COMPLETED, DigestStatus.FAILED, DigestStatus.SKIPPED)


@dataclass(slots=True)
class FileRecord:
    """A file or folder known to the system, keyed by its relative path."""

    path: str
    name: str
    is_folder: bool = False
    mime_type: str | None = None
    size: int | None = None
    hash: str | None = None
    created_at: str = field(default_factory=utc_now)
    modified_at: str = field(default_factory=utc_now)
    last_scanned_at: str | None = None

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return f".{ext.lower()}" if dot else ""


@dataclass(slots=True)
class DigestRecord:
    """Persisted status and content for one (file, digester) pair."""

    id: int
    file_path: str
    digester: str
    status: DigestStatus
    content: str | None = None
    error: str | None = None
    attempts: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_completed(self) -> bool:
        return self.status is DigestStatus.COMPLETED


@dataclass(slots=True)
class DigestInput:
    """A digest row produced by a digester, upserted by the coordinator."""

    file_path: str
    digester: str
    content: str | None = None
    status: DigestStatus = DigestStatus.COMPLETED
    error: str | None = None


@dataclass(slots=True)
class Chunk:
    """Overlapping text segment prepared for vector indexing."""

    index: int
    text: str
    span_start: int
    span_end: int
    overlap_tokens: int
    word_count: int
    token_count: int
    hash: str
    count: int = 0


@dataclass(slots=True)
class VectorDocument:
    """One chunk of one content source, as stored in the vector index."""

    id: str
    file_path: str
    source_type: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class KeywordDocument:
    """One file's searchable text, as stored in the keyword index."""

    document_id: str
    file_path: str
    content: str
    mime_type: str | None = None
    summary: str | None = None
    tags: str | None = None
