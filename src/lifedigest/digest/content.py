"""Collect the searchable text a file's digests have produced so far."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Sequence, Tuple

from lifedigest.digest.base import completed_content
from lifedigest.models import DigestRecord, FileRecord
from lifedigest.utils.files import is_text

LOGGER = logging.getLogger(__name__)

ContentSource = Tuple[str, str]


def objects_text(content: str) -> str:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return ""
    lines = []
    for obj in data.get("objects") or []:
        parts = [part for part in (obj.get("title"), obj.get("description")) if part]
        if parts:
            lines.append(": ".join(parts))
    return "\n".join(lines)


def transcript_text(content: str) -> str:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return content
    segments = data.get("segments") if isinstance(data, dict) else None
    if segments:
        return " ".join(segment.get("text", "").strip() for segment in segments).strip()
    if isinstance(data, dict) and data.get("text"):
        return data["text"]
    return content


def crawl_markdown(content: str) -> str:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return content
    if isinstance(data, dict):
        return data.get("markdown") or ""
    return content


def get_content_sources(
    file: FileRecord, digests: Sequence[DigestRecord], data_root: Path
) -> List[ContentSource]:
    """Text sources in priority order, each tagged with the digest it came from."""
    sources: List[ContentSource] = []

    content = completed_content(digests, "url-crawl-content")
    if content:
        sources.append(("url-crawl-content", crawl_markdown(content)))

    for name in ("doc-to-markdown", "image-ocr", "image-captioning"):
        content = completed_content(digests, name)
        if content:
            sources.append((name, content))

    content = completed_content(digests, "image-objects")
    if content:
        sources.append(("image-objects", objects_text(content)))

    # A cleaned transcript replaces the raw one.
    for name in ("speech-recognition-cleanup", "speech-recognition"):
        content = completed_content(digests, name)
        if content:
            sources.append((name, transcript_text(content)))
            break

    if not file.is_folder and is_text(file.name):
        try:
            sources.append(("file", (Path(data_root) / file.path).read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Unable to read %s: %s", file.path, exc)

    return [(source_type, text) for source_type, text in sources if text and text.strip()]


def primary_text(file: FileRecord, digests: Sequence[DigestRecord], data_root: Path) -> str:
    return "\n\n".join(text for _, text in get_content_sources(file, digests, data_root))


def summary_text(digests: Sequence[DigestRecord]) -> str | None:
    content = completed_content(digests, "speech-recognition-summary") or completed_content(
        digests, "url-crawl-summary"
    )
    if not content:
        return None
    try:
        return json.loads(content).get("summary") or None
    except (json.JSONDecodeError, AttributeError):
        return content


def tags_text(digests: Sequence[DigestRecord]) -> str | None:
    content = completed_content(digests, "tags")
    if not content:
        return None
    try:
        tags = json.loads(content).get("tags") or []
    except (json.JSONDecodeError, AttributeError):
        return None
    return ", ".join(tags) or None
