"""Run the applicable digesters for one file, in registration order."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from lifedigest.digest.base import DigestContext, Digester
from lifedigest.digest.registry import DigesterRegistry
from lifedigest.errors import is_retryable
from lifedigest.index.storage import SQLiteDigestStore
from lifedigest.models import DigestInput, DigestRecord, DigestStatus, FileRecord

LOGGER = logging.getLogger(__name__)

NOT_REGISTERED = "Digester not registered"
NOT_APPLICABLE = "Digester does not apply to this file"
NO_OUTPUT = "No output"
OUTPUT_NOT_PRODUCED = "Output not produced"

_SEARCH_INDEXES: Tuple[str, ...] = ("search-keyword", "search-semantic")

# Downstream digests that must be rebuilt when an upstream digest produces new content.
CASCADING_RESETS: Dict[str, Tuple[str, ...]] = {
    "url-crawl-content": ("url-crawl-summary", "tags", *_SEARCH_INDEXES),
    "url-crawl-summary": _SEARCH_INDEXES,
    "speech-recognition": (
        "speech-recognition-cleanup",
        "speech-recognition-summary",
        "tags",
        *_SEARCH_INDEXES,
    ),
    "speech-recognition-cleanup": ("speech-recognition-summary", "tags", *_SEARCH_INDEXES),
    "doc-to-markdown": ("tags", *_SEARCH_INDEXES),
    "image-ocr": ("tags", *_SEARCH_INDEXES),
    "image-captioning": ("tags", *_SEARCH_INDEXES),
    "image-objects": _SEARCH_INDEXES,
    "tags": _SEARCH_INDEXES,
    "speech-recognition-summary": _SEARCH_INDEXES,
}

_DONE = (DigestStatus.COMPLETED, DigestStatus.SKIPPED)
_OPEN = (DigestStatus.PENDING, DigestStatus.FAILED)


@dataclass(slots=True)
class ProcessFileResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0


class DigestCoordinator:
    """Turns one file into digest records.

    Failures are isolated per digester: an exception is written to that
    digester's records and the next digester still runs. Nothing raised by a
    digester reaches the caller.
    """

    def __init__(
        self,
        store: SQLiteDigestStore,
        registry: DigesterRegistry,
        *,
        context: DigestContext | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.context = context

    def close(self) -> None:
        """Release the index connections of the owned context. The store stays open."""
        if self.context is not None:
            self.context.close()

    def ensure_all_digesters(self, path: str) -> int:
        """Create pending placeholders for every applicable output. Returns the number created."""
        file = self.store.get_file(path)
        if file is None or file.is_folder:
            return 0

        created = 0
        for digester in self.registry.applicable(file):
            for output in digester.output_names:
                if self.store.create_placeholder(path, output):
                    created += 1

        self._skip_stray_records(file)
        if created:
            LOGGER.debug("Created %d digest placeholders for %s", created, path)
        return created

    def _skip_stray_records(self, file: FileRecord) -> int:
        """Settle records no registered, applicable digester will ever write.

        Unregistered outputs are skipped whatever their status. Outputs of
        digesters that no longer apply are skipped only while still open, so
        completed content stays readable.
        """
        registered = set(self.registry.names())
        applicable = {
            name for digester in self.registry.applicable(file) for name in digester.output_names
        }
        skipped = 0
        for record in self.store.list_digests_for_path(file.path):
            if record.digester not in registered:
                if record.status is not DigestStatus.SKIPPED:
                    self.store.mark_skipped(file.path, record.digester, NOT_REGISTERED)
                    skipped += 1
            elif record.digester not in applicable and record.status in _OPEN:
                self.store.mark_skipped(file.path, record.digester, NOT_APPLICABLE)
                skipped += 1
        return skipped

    async def process_file(
        self, path: str, *, reset: bool = False, digester: str | None = None
    ) -> ProcessFileResult:
        result = ProcessFileResult()
        file = self.store.get_file(path)
        if file is None:
            LOGGER.warning("File not found, skipping digestion: %s", path)
            return result

        target = self.registry.get(digester) if digester else None
        if digester and target is None:
            LOGGER.warning("Unknown digester %s requested for %s", digester, path)
            return result

        if not file.is_folder:
            self._skip_stray_records(file)

        for candidate in self.registry.applicable(file):
            if target is not None and candidate is not target:
                continue
            force = reset or target is not None
            if not force and self._is_done(path, candidate):
                result.skipped += 1
                continue

            if await self._run_digester(file, candidate):
                result.processed += 1
            else:
                result.failed += 1

        LOGGER.info(
            "Digested %s: %d processed, %d skipped, %d failed",
            path,
            result.processed,
            result.skipped,
            result.failed,
        )
        return result

    def _is_done(self, path: str, digester: Digester) -> bool:
        for output in digester.output_names:
            record = self.store.get_digest_by_path_and_digester(path, output)
            if record is None or record.status not in _DONE:
                return False
        return True

    async def _run_digester(self, file: FileRecord, digester: Digester) -> bool:
        path = file.path
        for output in digester.output_names:
            self.store.mark_in_progress(path, output)
        existing = self.store.list_digests_for_path(path)

        try:
            inputs = await digester.digest(file, existing)
        except Exception as exc:
            if is_retryable(exc):
                LOGGER.info("Digester %s deferred for %s: %s", digester.name, path, exc)
            else:
                LOGGER.warning("Digester %s failed for %s: %s", digester.name, path, exc)
            self._fail_outputs(path, digester.output_names, str(exc) or type(exc).__name__)
            return False

        if not inputs:
            self._fail_outputs(path, digester.output_names, NO_OUTPUT)
            return False

        written = self._write_outputs(inputs)
        missing = [name for name in digester.output_names if name not in written]
        self._fail_outputs(path, missing, OUTPUT_NOT_PRODUCED)

        for record in written.values():
            if record.status is DigestStatus.COMPLETED and record.content:
                self._cascade(path, record.digester)
        return not missing and all(
            record.status is not DigestStatus.FAILED for record in written.values()
        )

    def _write_outputs(self, inputs: Sequence[DigestInput]) -> Dict[str, DigestRecord]:
        written: Dict[str, DigestRecord] = {}
        for digest in inputs:
            written[digest.digester] = self.store.upsert_digest(digest)
        return written

    def _fail_outputs(self, path: str, outputs: Sequence[str], error: str) -> None:
        for output in outputs:
            self.store.mark_failed(path, output, error)

    def _cascade(self, path: str, upstream: str) -> List[str]:
        downstream = CASCADING_RESETS.get(upstream, ())
        stale = [
            record.digester
            for record in self.store.list_digests_for_path(path)
            if record.digester in downstream and record.status.is_terminal
        ]
        if stale:
            self.store.reset_digests(path, stale)
            LOGGER.debug("Reset %s for %s after %s changed", ", ".join(stale), path, upstream)
        return stale
