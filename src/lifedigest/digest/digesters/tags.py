"""AI-generated tags for any file with extractable text."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Sequence

from lifedigest.digest.base import Digester
from lifedigest.digest.content import primary_text
from lifedigest.errors import VendorNotConfigured
from lifedigest.models import DigestInput, DigestRecord, FileRecord

LOGGER = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 10
MAX_PROMPT_CHARS = 20_000
MIN_TAGS = 5
MAX_TAGS = 20

TAGS_PROMPT = f"""You are an expert knowledge organizer. Generate {MIN_TAGS}-{MAX_TAGS} tags that classify the content.
Tags are lowercase with spaces (e.g. "open source"), except proper nouns keep their usual form
(e.g. "iOS", "JavaScript"). No hashtags or numbering.
Respond with JSON in the form {{"tags": ["tag1", "tag2", ...]}}"""

TAGS_SCHEMA = {
    "type": "object",
    "properties": {
        "tags": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": MIN_TAGS,
            "maxItems": MAX_TAGS,
        }
    },
    "required": ["tags"],
    "additionalProperties": False,
}


def extract_tags(parsed: Any, max_tags: int = MAX_TAGS) -> List[str]:
    """Pull a clean, de-duplicated tag list out of ``{"tags": [...]}`` or a bare list."""
    values = parsed.get("tags") if isinstance(parsed, dict) else parsed
    if not isinstance(values, list):
        return []

    tags: List[str] = []
    seen: set[str] = set()
    for value in values:
        if not isinstance(value, str):
            continue
        tag = value.strip().lstrip("#").strip()
        if tag and tag.lower() not in seen:
            seen.add(tag.lower())
            tags.append(tag)
    return tags[:max_tags]


class TagsDigester(Digester):
    name = "tags"
    label = "Tags"

    def can_digest(self, file: FileRecord) -> bool:
        return not file.is_folder

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        text = primary_text(file, existing_digests, self.context.data_root)
        if len(text.strip()) < MIN_TEXT_LENGTH:
            return [self.result(file, None)]

        if self.context.openai is None:
            raise VendorNotConfigured("openai")
        parsed = await self.context.openai.complete_json(
            "Analyze the following content and produce tags.\n\n" + text[:MAX_PROMPT_CHARS],
            system=TAGS_PROMPT,
            json_schema=TAGS_SCHEMA,
            schema_name="tags",
            temperature=0.1,
        )
        tags = extract_tags(parsed)
        LOGGER.debug("Generated %d tags for %s", len(tags), file.path)
        return [self.result(file, json.dumps({"tags": tags}, ensure_ascii=False))]
