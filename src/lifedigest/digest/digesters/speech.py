"""Speech recognition, transcript cleanup and transcript summaries."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Sequence

import numpy as np

from lifedigest.digest.base import Digester, completed_content, require_completed
from lifedigest.digest.content import transcript_text
from lifedigest.errors import DigestError, VendorNotConfigured
from lifedigest.models import DigestInput, DigestRecord, FileRecord
from lifedigest.utils.files import is_audio

LOGGER = logging.getLogger(__name__)

SUMMARY_PROMPT = """You turn raw speech transcripts into organized notes for the people who spoke.

Write in the same language as the transcript, keeping mixed-language phrasing, names and
technical terms exactly as spoken. Summarize the substance rather than describing the
conversation: decisions, conclusions, action items and key details, grouped by topic.
Drop filler and recognition artifacts. Do not invent facts; mark anything unclear.

Markdown layout:
1. A one-line key takeaway as a blockquote at the very top.
2. A title inferred from the content.
3. The summary, grouped by topic with flat headings and short bullets.
4. Action Items and Open Questions sections only when present.

Return JSON with a single "summary" field containing the markdown."""

SUMMARY_SCHEMA = {
    "type": "object",
    "properties": {"summary": {"type": "string"}},
    "required": ["summary"],
    "additionalProperties": False,
}

CLEANUP_PROMPT = """You are a transcript editor. Clean up speech recognition output without changing its meaning.

Fix common transcription errors:
- Correct misheard words based on context
- Fix punctuation and capitalization
- Merge fragmented sentences
- Remove filler words (um, uh, like) where they disrupt the flow
- Fix speaker attribution when the context makes it obvious

"speaker_similarity" gives the cosine similarity of the speakers' voices; highly similar
speakers are often the same person split in two.

Return JSON with the full cleaned "text" and the "segments" list in the same order and shape
as the input. Only modify the text and speaker fields."""

CLEANUP_SCHEMA = {
    "type": "object",
    "properties": {
        "text": {"type": "string"},
        "segments": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "start": {"type": "number"},
                    "end": {"type": "number"},
                    "text": {"type": "string"},
                    "speaker": {"type": "string"},
                },
                "required": ["start", "end", "text", "speaker"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["text", "segments"],
    "additionalProperties": False,
}


def speaker_similarity(speakers: Sequence[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    """Pairwise cosine similarity of speaker embeddings, rounded to three places."""
    embedded = [speaker for speaker in speakers if speaker.get("embedding")]
    matrix: Dict[str, Dict[str, float]] = {}
    for speaker in embedded:
        a = np.asarray(speaker["embedding"], dtype=np.float32)
        row = matrix.setdefault(speaker["speaker_id"], {})
        for other in embedded:
            b = np.asarray(other["embedding"], dtype=np.float32)
            denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
            if a.shape != b.shape or denominator == 0:
                similarity = 0.0
            else:
                similarity = float(np.dot(a, b)) / denominator
            row[other["speaker_id"]] = round(similarity, 3)
    return matrix


def prepare_transcript(transcript: Dict[str, Any]) -> Dict[str, Any]:
    """Drop word timings and voice embeddings, which only cost tokens."""
    prepared: Dict[str, Any] = {
        "text": transcript.get("text", ""),
        "language": transcript.get("language"),
        "segments": [
            {
                "start": segment.get("start"),
                "end": segment.get("end"),
                "text": segment.get("text", ""),
                "speaker": segment.get("speaker"),
            }
            for segment in transcript.get("segments") or []
        ],
    }
    speakers = transcript.get("speakers") or []
    if speakers:
        prepared["speakers"] = [
            {
                "speaker_id": speaker.get("speaker_id"),
                "total_duration": speaker.get("total_duration"),
                "segment_count": speaker.get("segment_count"),
            }
            for speaker in speakers
        ]
        prepared["speaker_similarity"] = speaker_similarity(speakers)
    return prepared


def merge_cleaned(cleaned: Dict[str, Any], original: Dict[str, Any]) -> Dict[str, Any]:
    """Put the original word timings and speakers back around the cleaned text."""
    original_segments = original.get("segments") or []
    segments = []
    for index, segment in enumerate(cleaned.get("segments") or []):
        words = original_segments[index].get("words") if index < len(original_segments) else None
        segments.append({**segment, "words": words or []})
    merged = dict(original)
    merged["text"] = cleaned.get("text", "")
    merged["segments"] = segments
    return merged



class _AudioDigester(Digester):
    def can_digest(self, file: FileRecord) -> bool:
        return not file.is_folder and is_audio(file.mime_type, file.name)


class SpeechRecognitionDigester(_AudioDigester):
    name = "speech-recognition"
    label = "Speech Recognition"

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        if self.context.haid is None:
            raise VendorNotConfigured("haid")
        response = await self.context.haid.speech_recognition(self.context.resolve(file))
        LOGGER.debug(
            "Transcribed %s: %d segments", file.path, len(response.get("segments") or [])
        )
        return [self.result(file, json.dumps(response, ensure_ascii=False))]

class SpeechRecognitionCleanupDigester(_AudioDigester):
    """Fixes recognition errors in the transcript produced by `SpeechRecognitionDigester`."""

    name = "speech-recognition-cleanup"
    label = "Speech Recognition Cleanup"
    depends_on = SpeechRecognitionDigester.name

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        transcript = require_completed(
            existing_digests, self.depends_on, digester=self.name, file_path=file.path
        )
        try:
            original = json.loads(transcript.content or "")
        except json.JSONDecodeError as exc:
            raise DigestError(
                f"Transcript is not valid JSON: {exc}", digester=self.name, file_path=file.path
            ) from exc
        if not isinstance(original, dict) or not original.get("segments"):
            return [self.result(file, None)]

        if self.context.openai is None:
            raise VendorNotConfigured("openai")
        prepared = prepare_transcript(original)
        cleaned = await self.context.openai.complete_json(
            json.dumps(prepared, ensure_ascii=False),
            system=CLEANUP_PROMPT,
            json_schema=CLEANUP_SCHEMA,
            schema_name="transcript_cleanup",
            temperature=0.3,
        )
        if not isinstance(cleaned, dict) or not cleaned.get("segments"):
            raise DigestError("Cleanup returned no segments", digester=self.name, file_path=file.path)
        merged = merge_cleaned(cleaned, original)
        LOGGER.debug("Cleaned transcript of %s: %d segments", file.path, len(merged["segments"]))
        return [self.result(file, json.dumps(merged, ensure_ascii=False))]



class SpeechRecognitionSummaryDigester(_AudioDigester):
    """Summarizes the transcript produced by `SpeechRecognitionDigester`."""

    name = "speech-recognition-summary"
    label = "Speech Recognition Summary"
    depends_on = SpeechRecognitionDigester.name

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        transcript = require_completed(
            existing_digests, self.depends_on, digester=self.name, file_path=file.path
        )
        cleaned = completed_content(existing_digests, SpeechRecognitionCleanupDigester.name)
        text = transcript_text(cleaned or transcript.content or "").strip()
        if not text:
            return [self.result(file, None)]

        if self.context.openai is None:
            raise VendorNotConfigured("openai")
        parsed = await self.context.openai.complete_json(
            f"Transcript:\n\n{text}",
            system=SUMMARY_PROMPT,
            json_schema=SUMMARY_SCHEMA,
            schema_name="transcript_summary",
            temperature=0.3,
        )
        summary = parsed.get("summary") if isinstance(parsed, dict) else None
        if not summary:
            return [self.result(file, None)]
        return [self.result(file, json.dumps({"summary": summary}, ensure_ascii=False))]
