"""Digesters that push a file's digested text into the search indexes."""

from __future__ import annotations

import json
import logging
from typing import List, Sequence

from lifedigest.digest.base import Digester
from lifedigest.digest.content import get_content_sources, summary_text, tags_text
from lifedigest.errors import DigestError
from lifedigest.models import DigestInput, DigestRecord, FileRecord, KeywordDocument
from lifedigest.utils.text import count_words, sha256_text

LOGGER = logging.getLogger(__name__)


class SearchKeywordDigester(Digester):
    """One keyword document per file: content, summary and tags."""

    name = "search-keyword"
    label = "Keyword Search"

    def can_digest(self, file: FileRecord) -> bool:
        return not file.is_folder

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        keywords = self.context.keywords
        if keywords is None:
            raise DigestError("Keyword index not available", digester=self.name, file_path=file.path)

        sources = get_content_sources(file, existing_digests, self.context.data_root)
        text = "\n\n".join(source for _, source in sources)
        summary = summary_text(existing_digests)
        tags = tags_text(existing_digests)

        if not text and not summary and not tags:
            keywords.delete(file.path)
            return [self.result(file, None)]

        keywords.upsert(
            KeywordDocument(
                document_id=file.path,
                file_path=file.path,
                content=text,
                mime_type=file.mime_type,
                summary=summary,
                tags=tags,
            )
        )
        combined = " ".join(part for part in (text, summary, tags) if part)
        return [
            self.result(
                file,
                json.dumps(
                    {
                        "document_id": file.path,
                        "content_hash": sha256_text(combined),
                        "word_count": count_words(combined),
                        "sources": [source_type for source_type, _ in sources],
                    }
                ),
            )
        ]


class SearchSemanticDigester(Digester):
    """Chunks every content source (plus summary and tags) into the vector index."""

    name = "search-semantic"
    label = "Semantic Search"

    def can_digest(self, file: FileRecord) -> bool:
        return not file.is_folder

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        ingestor = self.context.ingestor
        if ingestor is None:
            raise DigestError("Vector index not available", digester=self.name, file_path=file.path)

        sources = get_content_sources(file, existing_digests, self.context.data_root)
        summary = summary_text(existing_digests)
        if summary:
            sources.append(("summary", summary))
        tags = tags_text(existing_digests)
        if tags:
            sources.append(("tags", tags))

        stats = await ingestor.ingest_async(file.path, sources, mime_type=file.mime_type)
        if not sources:
            return [self.result(file, None)]

        return [
            self.result(
                file,
                json.dumps(
                    {
                        "document_ids": stats.document_ids,
                        "embedded": len(stats.inserted),
                        "removed": len(stats.deleted),
                        "sources": [source_type for source_type, _ in sources],
                    }
                ),
            )
        ]
