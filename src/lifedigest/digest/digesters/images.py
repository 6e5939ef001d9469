"""Image digesters: OCR, captioning and object detection."""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import fitz  # PyMuPDF

from lifedigest.digest.base import Digester
from lifedigest.errors import VendorNotConfigured
from lifedigest.models import DigestInput, DigestRecord, FileRecord
from lifedigest.utils.files import guess_mime_type, is_image
from lifedigest.vision.matching import attach_masks, match_objects_to_masks

LOGGER = logging.getLogger(__name__)

CERTAINTY_LEVELS = ("certain", "likely", "uncertain")

IMAGE_OBJECTS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["objects"],
    "properties": {
        "objects": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["id", "title", "name", "category", "description", "bbox", "certainty"],
                "properties": {
                    "id": {"type": "string"},
                    "title": {"type": "string"},
                    "name": {"type": "string"},
                    "category": {"type": "string"},
                    "description": {"type": "string"},
                    "bbox": {
                        "type": "array",
                        "minItems": 4,
                        "maxItems": 4,
                        "items": {"type": "number", "minimum": 0, "maximum": 1},
                    },
                    "certainty": {"type": "string", "enum": list(CERTAINTY_LEVELS)},
                },
            },
        }
    },
}

IMAGE_OBJECTS_PROMPT = """You annotate images for object search and spatial indexing.

List every meaningful visible object: physical items, UI elements, signs, labels and readable text.
Include partially visible or unclear objects when there is visual evidence, using a generic name,
conservative wording ("appears to be", "possibly") and an honest certainty level.
Never invent brands, models or text that cannot be read; say so when text is unreadable.

For each object return:
- id: unique within this response, e.g. obj_001
- title: short, human-readable and unique, e.g. "MacBook" or "Book: Clean Code"
- name: a stable generic noun such as book, laptop, bottle
- category: a high-level group such as electronics, book, text, furniture, person, food, sign
- description: visible attributes and any readable text, verbatim
- bbox: [x1, y1, x2, y2] normalized to [0,1], (0,0) top-left, tightly around visible pixels
- certainty: certain, likely or uncertain

Respond with JSON: {"objects": [...]}"""


def _require_haid(digester: Digester):
    if digester.context.haid is None:
        raise VendorNotConfigured("haid")
    return digester.context.haid


def image_data_url(path: Path, mime_type: str | None) -> str:
    media_type = mime_type or guess_mime_type(path.name) or "image/jpeg"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def image_dimensions(path: Path) -> Tuple[int, int]:
    """(width, height) of an image file, read with PyMuPDF."""
    pixmap = fitz.Pixmap(str(path))
    return pixmap.width, pixmap.height


def _valid_bbox(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) == 4
        and all(isinstance(v, (int, float)) for v in value)
    )


class _ImageDigester(Digester):
    def can_digest(self, file: FileRecord) -> bool:
        return not file.is_folder and is_image(file.mime_type, file.name)


class ImageOcrDigester(_ImageDigester):
    name = "image-ocr"
    label = "Image OCR"

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        text = await _require_haid(self).image_ocr(self.context.resolve(file))
        return [self.result(file, text.strip() or None)]


class ImageCaptioningDigester(_ImageDigester):
    name = "image-captioning"
    label = "Image Captioning"

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        caption = await _require_haid(self).image_captioning(self.context.resolve(file))
        return [self.result(file, caption.strip() or None)]


class ImageObjectsDigester(_ImageDigester):
    """Detects objects with a vision model, then attaches segmentation masks.

    Segmentation is best effort: if the mask call fails, or the image size
    cannot be determined, every object keeps ``mask: None``.
    """

    name = "image-objects"
    label = "Image Objects"

    async def digest(
        self, file: FileRecord, existing_digests: Sequence[DigestRecord]
    ) -> List[DigestInput]:
        if self.context.openai is None:
            raise VendorNotConfigured("openai")

        path = self.context.resolve(file)
        parsed = await self.context.openai.complete_json(
            "Identify the objects in this image.",
            system=IMAGE_OBJECTS_PROMPT,
            json_schema=IMAGE_OBJECTS_SCHEMA,
            schema_name="image_objects",
            temperature=0.2,
            images=[image_data_url(path, file.mime_type)],
        )
        objects = [
            obj
            for obj in (parsed.get("objects") if isinstance(parsed, dict) else None) or []
            if isinstance(obj, dict) and _valid_bbox(obj.get("bbox"))
        ]

        objects = await self._with_masks(path, objects)
        LOGGER.debug("Detected %d objects in %s", len(objects), file.path)
        return [self.result(file, json.dumps({"objects": objects}, ensure_ascii=False))]

    async def _with_masks(self, path: Path, objects: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not objects:
            return objects
        haid = self.context.haid
        if haid is None or not haid.configured:
            return attach_masks(objects, [], [])

        try:
            response = await haid.segment_image(path)
            masks = [
                mask
                for mask in response.get("masks") or response.get("objects") or []
                if _valid_bbox(mask.get("box") or mask.get("bbox"))
            ]
            width, height = self._dimensions(path, response, masks)
        except Exception as exc:
            LOGGER.warning("Segmentation failed for %s, continuing without masks: %s", path, exc)
            return attach_masks(objects, [], [])

        normalized = [{**mask, "bbox": mask.get("box") or mask.get("bbox")} for mask in masks]
        matches = match_objects_to_masks(
            [obj["bbox"] for obj in objects],
            [mask["bbox"] for mask in normalized],
            width,
            height,
        )
        return attach_masks(objects, normalized, matches)

    @staticmethod
    def _dimensions(path: Path, response: Dict[str, Any], masks: List[Dict[str, Any]]) -> Tuple[int, int]:
        if response.get("image_width") and response.get("image_height"):
            return int(response["image_width"]), int(response["image_height"])
        for mask in masks:
            size = (mask.get("rle") or {}).get("size")
            if size and len(size) == 2:
                return int(size[1]), int(size[0])
        return image_dimensions(path)
