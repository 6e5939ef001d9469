"""Document to markdown conversion.

PDFs are extracted locally with PyMuPDF; other office formats go through HAID.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterator, List, Sequence

import fitz  # PyMuPDF

from lifedigest.digest.base import Digester
from lifedigest.errors import VendorNotConfigured
from lifedigest.models import DigestInput, DigestRecord, FileRecord
from lifedigest.utils.files import is_document
from lifedigest.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


def iter_pdf_pages(path: Path) -> Iterator[str]:
    """Yield normalized text of each non-empty PDF page."""
    doc = fitz.open(path)
    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized
    finally:
        doc.close()


def pdf_to_markdown(path: Path) -> str:
    doc = fitz.open(path)
    try:
        title = (doc.metadata or {}).get("title") or ""
    finally:
        doc.close()
    pages = list(iter_pdf_pages(path))
    if title and pages:
        return f"# {title}\n\n" + "\n\n".join(pages)
    return "\n\n".join(pages)


class DocToMarkdownDigester(Digester):
    name = "doc-to-markdown"
    label = "Document to Markdown"

    def can_digest(self, file: FileRecord) -> bool:
        return not file.is_folder and is_document(file.mime_type, file.name)

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        path = self.context.resolve(file)
        if file.extension == ".pdf" or file.mime_type == "application/pdf":
            markdown = await asyncio.to_thread(pdf_to_markdown, path)
        else:
            if self.context.haid is None:
                raise VendorNotConfigured("haid")
            markdown = await self.context.haid.doc_to_markdown(path)

        LOGGER.debug("Converted %s to %d characters of markdown", file.path, len(markdown))
        return [self.result(file, markdown.strip() or None)]
