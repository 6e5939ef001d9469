"""Web pages saved as URL files: crawl them, then summarize what was crawled.

A URL file is a small text file whose whole content is one http(s) address.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Sequence

from lifedigest.digest.base import Digester, find_digest, require_completed
from lifedigest.digest.content import crawl_markdown
from lifedigest.errors import DigestError, VendorNotConfigured
from lifedigest.models import DigestInput, DigestRecord, FileRecord
from lifedigest.utils.files import is_text

LOGGER = logging.getLogger(__name__)

MAX_URL_BYTES = 2048
MIN_SUMMARY_CHARS = 100
MAX_PROMPT_CHARS = 30_000

SUMMARY_PROMPT = """You summarize web pages a person saved for later reading.

Write in the same language as the page. Capture the main argument or purpose, the key facts
and any conclusions, as short markdown with a one-line takeaway at the top followed by
bullets. Leave out navigation text, ads and cookie notices. Do not invent facts.

Return JSON with a single "summary" field containing the markdown."""

SUMMARY_SCHEMA = {
    "type": "object",
    "properties": {"summary": {"type": "string"}},
    "required": ["summary"],
    "additionalProperties": False,
}


def read_url(path: Path) -> str | None:
    """The address stored in a URL file, or None when the file holds anything else."""
    try:
        with path.open("rb") as handle:
            text = handle.read(MAX_URL_BYTES).decode("utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None
    if not text.startswith(("http://", "https://")):
        return None
    if any(char.isspace() for char in text):
        return None
    return text


def _is_text_file(file: FileRecord) -> bool:
    return (file.mime_type or "").startswith("text/") or is_text(file.name)


class UrlCrawlDigester(Digester):
    name = "url-crawl"
    label = "URL Crawler"
    outputs = ("url-crawl-content", "url-metadata")

    def can_digest(self, file: FileRecord) -> bool:
        if file.is_folder or not _is_text_file(file):
            return False
        return read_url(self.context.resolve(file)) is not None

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        crawler = self.context.crawler
        if crawler is None:
            raise DigestError("Web crawler not available", digester=self.name, file_path=file.path)
        url = read_url(self.context.resolve(file))
        if url is None:
            raise DigestError("File no longer holds a URL", digester=self.name, file_path=file.path)

        page = await crawler.crawl(url)
        LOGGER.debug("Crawled %s for %s: %d words", page.final_url, file.path, page.word_count)

        content = None
        if page.markdown.strip():
            content = json.dumps(
                {
                    "markdown": page.markdown,
                    "word_count": page.word_count,
                    "reading_time_minutes": page.reading_time_minutes,
                },
                ensure_ascii=False,
            )
        return [
            self.result(file, content, digester="url-crawl-content"),
            self.result(file, json.dumps(page.metadata(), ensure_ascii=False), digester="url-metadata"),
        ]


class UrlCrawlSummaryDigester(Digester):
    """Summarizes the markdown produced by `UrlCrawlDigester`."""

    name = "url-crawl-summary"
    label = "URL Crawl Summary"
    depends_on = "url-crawl-content"

    def can_digest(self, file: FileRecord) -> bool:
        if file.is_folder or not _is_text_file(file):
            return False
        return read_url(self.context.resolve(file)) is not None

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        upstream = find_digest(existing_digests, self.depends_on)
        if upstream is not None and upstream.is_completed and not upstream.content:
            return [self.result(file, None)]
        crawled = require_completed(
            existing_digests, self.depends_on, digester=self.name, file_path=file.path
        )
        markdown = crawl_markdown(crawled.content or "").strip()
        if len(markdown) < MIN_SUMMARY_CHARS:
            return [self.result(file, None)]

        if self.context.openai is None:
            raise VendorNotConfigured("openai")
        parsed = await self.context.openai.complete_json(
            f"Page content:\n\n{markdown[:MAX_PROMPT_CHARS]}",
            system=SUMMARY_PROMPT,
            json_schema=SUMMARY_SCHEMA,
            schema_name="url_summary",
            temperature=0.3,
        )
        summary = parsed.get("summary") if isinstance(parsed, dict) else None
        if not summary:
            return [self.result(file, None)]
        return [self.result(file, json.dumps({"summary": summary}, ensure_ascii=False))]
