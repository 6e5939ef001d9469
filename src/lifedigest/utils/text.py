"""Text helpers including token-bounded chunking for vector ingestion."""

from __future__ import annotations

import hashlib
import json
import math
import re
from typing import Any, Iterable, List

from lifedigest.models import Chunk

CHARS_PER_TOKEN = 4
DEFAULT_TARGET_TOKENS = 900
DEFAULT_OVERLAP_PERCENT = 0.15
BOUNDARY_WINDOW = 200

# (pattern, offset past match start), in priority order
_BOUNDARIES = (
    (re.compile(r"\n#{1,6}\s+"), 1),  # heading line start
    (re.compile(r"\n\n+"), 2),  # paragraph break
    (re.compile(r"[.!?]\s+"), 2),  # sentence end
    (re.compile(r"\s+"), 1),
)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def count_words(text: str) -> int:
    return len(text.split())


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def document_id(file_path: str, source_type: str, chunk_index: int) -> str:
    """Stable identity of a chunk in the vector index."""
    return f"{file_path}:{source_type}:{chunk_index}"


def find_boundary(text: str, target: int, *, window: int = BOUNDARY_WINDOW) -> int:
    """Return the best split offset near ``target``.

    Searches ``target ± window`` for a heading, then a paragraph break, then a
    sentence end, then any whitespace. Within a tier the last match wins, but
    only if it falls in the latter half of the window; otherwise the next tier is
    tried. Falls back to a hard split at ``target``.
    """
    start = max(0, target - window)
    end = min(len(text), target + window)
    segment = text[start:end]

    for pattern, skip in _BOUNDARIES:
        last = None
        for last in pattern.finditer(segment):
            pass
        if last is not None and last.start() > window // 2:
            return start + last.start() + skip
    return target


def _make_chunk(text: str, index: int, start: int, end: int) -> Chunk:
    piece = text[start:end]
    return Chunk(
        index=index,
        text=piece,
        span_start=start,
        span_end=end,
        overlap_tokens=0,
        word_count=count_words(piece),
        token_count=estimate_tokens(piece),
        hash=sha256_text(piece),
    )


def chunk_text(
    text: str,
    *,
    target_tokens: int = DEFAULT_TARGET_TOKENS,
    overlap_percent: float = DEFAULT_OVERLAP_PERCENT,
) -> List[Chunk]:
    """Split text into overlapping, token-bounded chunks.

    A text that fits in ``target_tokens`` yields one chunk covering all of it.
    Longer texts are cut near ``target_tokens * 4`` characters on the most
    natural boundary available, and each chunk after the first starts
    ``overlap_tokens * 4`` characters before the previous one ended.
    """
    if target_tokens <= 0:
        target_tokens = DEFAULT_TARGET_TOKENS
    if overlap_percent < 0:
        overlap_percent = DEFAULT_OVERLAP_PERCENT

    overlap_tokens = int(target_tokens * overlap_percent)
    target_chars = target_tokens * CHARS_PER_TOKEN
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN
    length = len(text)

    if length <= target_chars:
        chunk = _make_chunk(text, 0, 0, length)
        chunk.count = 1
        return [chunk]

    chunks: List[Chunk] = []
    position = 0
    while position < length:
        candidate = position + target_chars
        is_last = candidate >= length
        if is_last:
            end = length
        else:
            end = find_boundary(text, candidate)
            if end <= position:
                end = candidate

        chunks.append(_make_chunk(text, len(chunks), position, end))
        if is_last or end >= length:
            break

        next_position = end - overlap_chars
        if next_position <= position:
            next_position = position + 1
        position = next_position

    for chunk in chunks:
        chunk.count = len(chunks)
        if chunk.index > 0:
            chunk.overlap_tokens = overlap_tokens
    return chunks


def parse_json_from_response(content: str) -> Any:
    """Parse JSON out of a model reply that may wrap it in prose or a code fence."""
    content = content.strip()
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    for pattern, group in ((_CODE_BLOCK_RE, 1), (_OBJECT_RE, 0), (_ARRAY_RE, 0)):
        match = pattern.search(content)
        if not match:
            continue
        try:
            return json.loads(match.group(group).strip())
        except json.JSONDecodeError:
            continue
    raise ValueError("Unable to parse JSON from model response")


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
