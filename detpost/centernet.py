"""Decoding of CenterNet heat-map outputs into detections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from detpost.boxes import sigmoid

MEAN = np.array([0.406, 0.456, 0.485], dtype=np.float32)
STD = np.array([0.225, 0.224, 0.229], dtype=np.float32)


@dataclass(frozen=True)
class Detection:
    """An integer (x, y, width, height) box with class label and score."""

    x: int
    y: int
    width: int
    height: int
    label: int
    score: float

    @property
    def area(self) -> int:
        return self.width * self.height


def normalize(image) -> np.ndarray:
    """Turn a resized BGR uint8 image (H, W, 3) into a normalised RGB (3, H, W) tensor."""
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("expected an image of shape (height, width, 3)")
    rgb = image[..., ::-1].astype(np.float32)
    out = rgb * (1.0 / (255.0 * STD)) + (-MEAN / STD)
    return np.ascontiguousarray(out.transpose(2, 0, 1), dtype=np.float32)


def _intersection_area(a: Detection, b: Detection) -> int:
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    width = min(a.x + a.width, b.x + b.width) - x1
    height = min(a.y + a.height, b.y + b.height) - y1
    if width <= 0 or height <= 0:
        return 0
    return width * height


def rect_nms(detections: Iterable[Detection], threshold: float) -> list[Detection]:
    """Greedy suppression of integer rectangles with overlap >= threshold."""
    ordered = sorted(detections, key=lambda det: det.score, reverse=True)
    suppressed = [False] * len(ordered)
    for i, best in enumerate(ordered):
        if suppressed[i]:
            continue
        for j in range(i + 1, len(ordered)):
            if suppressed[j]:
                continue
            inter = _intersection_area(best, ordered[j])
            union = best.area + ordered[j].area - inter
            if union != 0 and inter / union >= threshold:
                suppressed[j] = True
    return [det for det, gone in zip(ordered, suppressed) if not gone]


def decode_heatmap(
    scores,
    offsets,
    sizes,
    frame_height: int,
    frame_width: int,
    input_height: int,
    input_width: int,
    conf_threshold: float,
) -> list[Detection]:
    """Turn class logits (C, H, W), offsets (2, H, W) and sizes (2, H, W) into boxes."""
    scores = np.asarray(scores, dtype=np.float64)
    grid_y, grid_x = scores.shape[-2:]
    scores = scores.reshape(-1, grid_y, grid_x)
    offsets = np.asarray(offsets, dtype=np.float64).reshape(2, grid_y, grid_x)
    sizes = np.asarray(sizes, dtype=np.float64).reshape(2, grid_y, grid_x)
    if scores.shape[0] == 0:
        return []

    probs = sigmoid(scores)
    class_ids = probs.argmax(axis=0)
    best = probs.max(axis=0)

    ratioh = frame_height / input_height
    ratiow = frame_width / input_width
    stride = float(input_height // grid_y)

    detections = []
    for i, j in zip(*np.nonzero(best > conf_threshold)):
        cx = (offsets[0, i, j] + j) * stride * ratiow
        cy = (offsets[1, i, j] + i) * stride * ratioh
        w = sizes[0, i, j] * stride * ratiow
        h = sizes[1, i, j] * stride * ratioh
        detections.append(
            Detection(
                x=max(int(cx - 0.5 * w), 0),
                y=max(int(cy - 0.5 * h), 0),
                width=min(int(w), frame_width - 1),
                height=min(int(h), frame_height - 1),
                label=int(class_ids[i, j]),
                score=float(best[i, j]),
            )
        )
    return detections


def postprocess(
    scores,
    offsets,
    sizes,
    frame_height: int,
    frame_width: int,
    input_height: int,
    input_width: int,
    conf_threshold: float,
    nms_threshold: float,
) -> list[Detection]:
    """Decode the heat map and suppress overlapping boxes."""
    detections = decode_heatmap(
        scores,
        offsets,
        sizes,
        frame_height,
        frame_width,
        input_height,
        input_width,
        conf_threshold,
    )
    return rect_nms(detections, nms_threshold)