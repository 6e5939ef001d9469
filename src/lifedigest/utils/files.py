"""Utility helpers for working with files under the data root."""

from __future__ import annotations

import hashlib
import mimetypes
from pathlib import Path
from typing import Iterable, Iterator

IMAGE_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff", ".tif", ".heic", ".heif"}
)
AUDIO_EXTENSIONS = frozenset(
    {".mp3", ".wav", ".ogg", ".m4a", ".aac", ".flac", ".webm", ".opus", ".aiff", ".wma"}
)
DOCUMENT_EXTENSIONS = frozenset(
    {".pdf", ".doc", ".docx", ".ppt", ".pptx", ".xls", ".xlsx", ".odt", ".rtf", ".epub"}
)
TEXT_EXTENSIONS = frozenset({".md", ".txt"})

_EXTRA_MIME_TYPES = {
    ".md": "text/markdown",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".m4a": "audio/mp4",
    ".opus": "audio/opus",
    ".webp": "image/webp",
}


def iter_data_files(root: Path, excluded_prefixes: Iterable[str] = ()) -> Iterator[Path]:
    """Yield files under ``root`` in sorted order, skipping hidden and excluded paths."""
    excluded = tuple(excluded_prefixes)
    for item in sorted(root.rglob("*")):
        if not item.is_file():
            continue
        relative = item.relative_to(root).as_posix()
        if any(part.startswith(".") for part in Path(relative).parts):
            continue
        if excluded and relative.startswith(excluded):
            continue
        yield item


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def guess_mime_type(name: str) -> str | None:
    suffix = Path(name).suffix.lower()
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type


def _matches(mime_type: str | None, name: str, prefix: str, extensions: frozenset[str]) -> bool:
    if mime_type and mime_type.startswith(prefix):
        return True
    return Path(name).suffix.lower() in extensions


def is_image(mime_type: str | None, name: str) -> bool:
    return _matches(mime_type, name, "image/", IMAGE_EXTENSIONS)


def is_audio(mime_type: str | None, name: str) -> bool:
    return _matches(mime_type, name, "audio/", AUDIO_EXTENSIONS)


def is_document(mime_type: str | None, name: str) -> bool:
    if mime_type == "application/pdf":
        return True
    return Path(name).suffix.lower() in DOCUMENT_EXTENSIONS


def is_text(name: str) -> bool:
    return Path(name).suffix.lower() in TEXT_EXTENSIONS
