"""Discover files under the data root and keep file records in sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Protocol, Sequence

from lifedigest.index.storage import SQLiteDigestStore
from lifedigest.models import FileRecord, to_timestamp, utc_now
from lifedigest.utils.files import compute_sha256, guess_mime_type, iter_data_files

LOGGER = logging.getLogger(__name__)


class FileIndex(Protocol):
    def delete_for_file(self, file_path: str) -> int:
        ...


@dataclass(frozen=True, slots=True)
class FileChangeEvent:
    path: str
    is_new: bool
    content_changed: bool


@dataclass(slots=True)
class ScanStats:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0
    failed: int = 0
    changes: List[FileChangeEvent] = field(default_factory=list)

    def record(self, change: FileChangeEvent) -> None:
        if change.is_new:
            self.inserted += 1
        elif change.content_changed:
            self.updated += 1
        else:
            self.unchanged += 1
        self.changes.append(change)


def _modified_at(path: Path) -> str:
    return to_timestamp(datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc))


def scan_data_root(
    store: SQLiteDigestStore,
    root: Path,
    *,
    excluded_prefixes: Iterable[str] | None = None,
    indexes: Sequence[FileIndex] = (),
) -> ScanStats:
    """Upsert a record for every file under ``root`` and drop records for vanished ones.

    Returns the observed changes so a caller can forward them to the worker as
    `FileChange` messages. Records of removed files are also purged from
    ``indexes``.
    """
    root = Path(root)
    if excluded_prefixes is None:
        excluded_prefixes = store.excluded_path_prefixes
    stats = ScanStats()
    seen: set[str] = set()
    scanned_at = utc_now()

    for item in iter_data_files(root, excluded_prefixes):
        relative = item.relative_to(root).as_posix()
        seen.add(relative)
        try:
            file_hash = compute_sha256(item)
            size = item.stat().st_size
            modified_at = _modified_at(item)
        except OSError as exc:
            LOGGER.warning("Unable to read %s: %s", item, exc)
            stats.failed += 1
            continue

        existing = store.get_file(relative)
        record = FileRecord(
            path=relative,
            name=item.name,
            mime_type=guess_mime_type(item.name),
            size=size,
            hash=file_hash,
            modified_at=modified_at,
            last_scanned_at=scanned_at,
        )
        if existing is not None:
            record.created_at = existing.created_at
        store.upsert_file(record)
        stats.record(
            FileChangeEvent(
                path=relative,
                is_new=existing is None,
                content_changed=existing is not None and existing.hash != file_hash,
            )
        )

    for record in store.list_files(include_folders=True):
        if record.path in seen:
            continue
        store.delete_file(record.path)
        for index in indexes:
            index.delete_for_file(record.path)
        stats.removed += 1
        LOGGER.info("Removed vanished file %s", record.path)

    LOGGER.info(
        "Scan of %s: %d new, %d changed, %d unchanged, %d removed",
        root,
        stats.inserted,
        stats.updated,
        stats.unchanged,
        stats.removed,
    )
    return stats
