"""Greedy matching of detected-object boxes to segmentation masks by IoU."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence

DEFAULT_IOU_THRESHOLD = 0.3

Box = Sequence[float]


@dataclass(slots=True, frozen=True)
class MatchedMask:
    object_index: int
    mask_index: int
    iou: float


def denormalize_bbox(box: Box, width: float, height: float) -> tuple[float, float, float, float]:
    """Convert a ``[x1, y1, x2, y2]`` box in [0, 1] to pixel coordinates."""
    x1, y1, x2, y2 = box
    return (x1 * width, y1 * height, x2 * width, y2 * height)


def _area(box: Box) -> float:
    return max(0.0, box[2] - box[0]) * max(0.0, box[3] - box[1])


def compute_iou(a: Box, b: Box) -> float:
    """Intersection over union of two ``[x1, y1, x2, y2]`` boxes."""
    ix1 = max(a[0], b[0])
    iy1 = max(a[1], b[1])
    ix2 = min(a[2], b[2])
    iy2 = min(a[3], b[3])
    if ix1 >= ix2 or iy1 >= iy2:
        return 0.0

    intersection = (ix2 - ix1) * (iy2 - iy1)
    union = _area(a) + _area(b) - intersection
    if union <= 0:
        return 0.0
    return min(1.0, max(0.0, intersection / union))


def match_objects_to_masks(
    object_boxes: Sequence[Box],
    mask_boxes: Sequence[Box],
    width: float,
    height: float,
    *,
    threshold: float = DEFAULT_IOU_THRESHOLD,
) -> List[MatchedMask]:
    """Assign at most one mask to each object, best overlaps first.

    ``object_boxes`` are normalized to [0, 1]; ``mask_boxes`` are already in
    pixels. Pairs under ``threshold`` are discarded, the rest are walked in
    descending IoU order and committed when neither side is taken yet. This is
    greedy rather than globally optimal, and deterministic for a given input.
    """
    pixel_boxes = [denormalize_bbox(box, width, height) for box in object_boxes]

    candidates: List[MatchedMask] = []
    for object_index, object_box in enumerate(pixel_boxes):
        for mask_index, mask_box in enumerate(mask_boxes):
            iou = compute_iou(object_box, mask_box)
            if iou >= threshold:
                candidates.append(MatchedMask(object_index, mask_index, iou))

    candidates.sort(key=lambda pair: (-pair.iou, pair.object_index, pair.mask_index))

    used_objects: set[int] = set()
    used_masks: set[int] = set()
    matches: List[MatchedMask] = []
    for pair in candidates:
        if pair.object_index in used_objects or pair.mask_index in used_masks:
            continue
        used_objects.add(pair.object_index)
        used_masks.add(pair.mask_index)
        matches.append(pair)
    return matches


def attach_masks(
    objects: Sequence[Mapping[str, Any]],
    masks: Sequence[Mapping[str, Any]],
    matches: Sequence[MatchedMask],
) -> List[Dict[str, Any]]:
    """Return copies of ``objects`` with a ``mask`` entry, None when unmatched."""
    by_object = {match.object_index: match for match in matches}
    merged: List[Dict[str, Any]] = []
    for index, obj in enumerate(objects):
        record = dict(obj)
        match = by_object.get(index)
        if match is None:
            record["mask"] = None
        else:
            mask = masks[match.mask_index]
            record["mask"] = {
                "bbox": list(mask.get("bbox") or []),
                "rle": mask.get("rle"),
                "iou": round(match.iou, 4),
            }
        merged.append(record)
    return merged
