"""Digester interface and the context digesters run with."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Sequence

from lifedigest.errors import DependencyNotReady
from lifedigest.models import DigestInput, DigestRecord, DigestStatus, FileRecord

if TYPE_CHECKING:
    from lifedigest.index.ingest import VectorIngestor
    from lifedigest.index.keyword import SQLiteKeywordStore
    from lifedigest.vendors.crawler import WebCrawler
    from lifedigest.vendors.haid import HaidClient
    from lifedigest.vendors.openai import OpenAIClient


@dataclass(slots=True)
class DigestContext:
    """Collaborators shared by all digesters of one registry."""

    data_root: Path
    openai: "OpenAIClient | None" = None
    haid: "HaidClient | None" = None
    ingestor: "VectorIngestor | None" = None
    keywords: "SQLiteKeywordStore | None" = None
    crawler: "WebCrawler | None" = None

    def resolve(self, file: FileRecord) -> Path:
        return Path(self.data_root) / file.path

    def close(self) -> None:
        """Close the index connections opened for this context."""
        if self.ingestor is not None:
            self.ingestor.store.close()
        if self.keywords is not None:
            self.keywords.close()


class Digester(ABC):
    """A named processing stage that turns one file into digest records.

    ``can_digest`` decides whether the stage applies to a file at all; it must
    not depend on other digests. Dependencies are checked inside ``digest`` by
    reading ``existing_digests`` and raising `DependencyNotReady`.
    """

    name: str = ""
    label: str = ""
    outputs: tuple[str, ...] = ()

    def __init__(self, context: DigestContext) -> None:
        self.context = context

    @property
    def output_names(self) -> tuple[str, ...]:
        return self.outputs or (self.name,)

    @abstractmethod
    def can_digest(self, file: FileRecord) -> bool:
        ...

    @abstractmethod
    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        ...

    def result(self, file: FileRecord, content: str | None, *, digester: str | None = None) -> DigestInput:
        return DigestInput(
            file_path=file.path,
            digester=digester or self.name,
            content=content,
            status=DigestStatus.COMPLETED,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


def find_digest(existing: Sequence[DigestRecord], name: str) -> DigestRecord | None:
    for record in existing:
        if record.digester == name:
            return record
    return None


def completed_content(existing: Sequence[DigestRecord], name: str) -> str | None:
    record = find_digest(existing, name)
    if record is None or not record.is_completed:
        return None
    return record.content


def require_completed(
    existing: Sequence[DigestRecord], dependency: str, *, digester: str, file_path: str
) -> DigestRecord:
    """Return the completed ``dependency`` record or raise `DependencyNotReady`."""
    record = find_digest(existing, dependency)
    if record is None or not record.is_completed or not record.content:
        raise DependencyNotReady(digester, dependency, file_path)
    return record
