"""Shared box types, non-maximum suppression and small numeric helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

_EPSILON = float(np.finfo(np.float32).eps)


@dataclass(frozen=True)
class BoxInfo:
    """A corner-form detection box with its score and class label."""

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    label: int

    @property
    def area(self) -> float:
        """Pixel-inclusive area, as used by the suppression step."""
        return (self.x2 - self.x1 + 1) * (self.y2 - self.y1 + 1)


@dataclass(frozen=True)
class Letterbox:
    """Geometry of a resize-and-pad operation into a fixed input size."""

    newh: int
    neww: int
    top: int
    bottom: int
    left: int
    right: int


def nms(boxes: Iterable[BoxInfo], threshold: float) -> list[BoxInfo]:
    """Greedy suppression: drop boxes whose overlap with a better one is >= threshold."""
    ordered = sorted(boxes, key=lambda box: box.score, reverse=True)
    areas = [box.area for box in ordered]
    suppressed = [False] * len(ordered)
    for i, best in enumerate(ordered):
        if suppressed[i]:
            continue
        for j in range(i + 1, len(ordered)):
            if suppressed[j]:
                continue
            other = ordered[j]
            w = max(0.0, min(best.x2, other.x2) - max(best.x1, other.x1) + 1)
            h = max(0.0, min(best.y2, other.y2) - max(best.y1, other.y1) + 1)
            inter = w * h
            union = areas[i] + areas[j] - inter
            if union != 0 and inter / union >= threshold:
                suppressed[j] = True
    return [box for box, gone in zip(ordered, suppressed) if not gone]


def _rect_intersection_area(a: Sequence[float], b: Sequence[float]) -> float:
    x1 = max(a[0], b[0])
    y1 = max(a[1], b[1])
    width = min(a[0] + a[2], b[0] + b[2]) - x1
    height = min(a[1] + a[3], b[1] + b[3]) - y1
    if width <= 0 or height <= 0:
        return 0.0
    return width * height


def _rect_overlap(a: Sequence[float], b: Sequence[float]) -> float:
    area_a = a[2] * a[3]
    area_b = b[2] * b[3]
    if area_a + area_b <= _EPSILON:
        return 1.0
    inter = _rect_intersection_area(a, b)
    return inter / (area_a + area_b - inter)


def nms_boxes(
    rects: Sequence[Sequence[float]],
    scores: Sequence[float],
    score_threshold: float,
    nms_threshold: float,
    top_k: int = 0,
) -> list[int]:
    """Suppress (x, y, w, h) rectangles; returns kept indices, best score first.

    Only scores strictly above ``score_threshold`` are considered; a positive
    ``top_k`` limits how many candidates enter the suppression.
    """
    if len(rects) != len(scores):
        raise ValueError("rects and scores must have the same length")
    candidates = [i for i, score in enumerate(scores) if score > score_threshold]
    candidates.sort(key=lambda i: scores[i], reverse=True)
    if top_k > 0:
        candidates = candidates[:top_k]
    kept: list[int] = []
    for idx in candidates:
        if all(_rect_overlap(rects[idx], rects[k]) <= nms_threshold for k in kept):
            kept.append(idx)
    return kept


def letterbox(
    src_height: int,
    src_width: int,
    target_height: int,
    target_width: int,
    keep_ratio: bool,
) -> Letterbox:
    """Compute the resized size and padding that fit a source image into the target."""
    if not keep_ratio or src_height == src_width:
        return Letterbox(target_height, target_width, 0, 0, 0, 0)
    hw_scale = np.float32(src_height) / np.float32(src_width)
    if hw_scale > 1:
        newh = target_height
        neww = int(np.float32(target_width) / hw_scale)
        left = int((target_width - neww) * 0.5)
        return Letterbox(newh, neww, 0, 0, left, target_width - neww - left)
    newh = int(np.float32(target_height) * hw_scale)
    neww = target_width
    top = int((target_height - newh) * 0.5)
    return Letterbox(newh, neww, top, target_height - newh - top, 0, 0)


def softmax(values: Iterable[float]) -> np.ndarray:
    """Normalised exponentials of ``values``."""
    arr = np.asarray(list(values) if not isinstance(values, np.ndarray) else values, dtype=np.float64)
    exps = np.exp(arr - arr.max()) if arr.size else arr
    return exps / exps.sum() if arr.size else exps


def distribution_distance(values: Iterable[float]) -> float:
    """Expected bin index of the softmax distribution over ``values``."""
    probs = softmax(values)
    return float(np.dot(np.arange(probs.size), probs))


def sigmoid(x):
    """Logistic function; works on scalars and arrays."""
    with np.errstate(over="ignore"):
        result = 1.0 / (1.0 + np.exp(-np.asarray(x, dtype=np.float64)))
    return float(result) if result.ndim == 0 else result


def read_class_names(path) -> list[str]:
    """Read one class name per line."""
    text = Path(path).read_text(encoding="utf-8")
    names = text.split("\n")
    if names and names[-1] == "":
        names.pop()
    return names