"""Prior boxes, decoding and suppression for the libface face detector."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

import numpy as np

MIN_SIZES = ((10.0, 16.0, 24.0), (32.0, 48.0), (64.0, 96.0), (128.0, 192.0, 256.0))
STEPS = (8, 16, 32, 64)
VARIANCE = (0.1, 0.2)

REFERENCE_FACIAL_POINTS = (
    (38.2946, 43.6963),
    (73.5318, 43.5014),
    (56.0252, 63.7366),
    (41.5493, 84.3655),
    (70.7299, 84.2041),
)

Point = tuple[float, float]


@dataclass(frozen=True)
class BBox:
    """Corner-form box: top-left (x1, y1) and bottom-right (x2, y2)."""

    x1: float
    y1: float
    x2: float
    y2: float

    def area(self) -> float:
        """Pixel-inclusive area."""
        return (self.x2 - self.x1 + 1) * (self.y2 - self.y1 + 1)


@dataclass(frozen=True)
class Landmarks:
    """Five facial landmarks."""

    right_eye: Point
    left_eye: Point
    mouth_left: Point
    nose_tip: Point
    mouth_right: Point


@dataclass(frozen=True)
class Face:
    """A detected face: box, landmarks and score."""

    bbox: BBox
    landmarks: Landmarks
    score: float


class PriorBox:
    """Prior boxes of the detector for a given input width (height is 3/4 of it)."""

    def __init__(self, width: int = 320):
        if width <= 0:
            raise ValueError("width must be positive")
        self.width = int(width)
        self.height = int(0.75 * width)
        second = (((self.width + 1) // 2) // 2, ((self.height + 1) // 2) // 2)
        sizes = []
        current = second
        for _ in range(4):
            current = (current[0] // 2, current[1] // 2)
            sizes.append(current)
        self.feature_map_sizes: list[tuple[int, int]] = sizes
        self.priors = self._generate_priors()

    def _generate_priors(self) -> np.ndarray:
        """Priors as rows of (cx, cy, w, h), normalised to the input size."""
        parts = []
        for (fw, fh), min_sizes, step in zip(self.feature_map_sizes, MIN_SIZES, STEPS):
            if fw <= 0 or fh <= 0:
                continue
            ys, xs = np.meshgrid(np.arange(fh), np.arange(fw), indexing="ij")
            cx = ((xs.ravel() + 0.5) * step / self.width).astype(np.float32)
            cy = ((ys.ravel() + 0.5) * step / self.height).astype(np.float32)
            sizes = np.asarray(min_sizes, dtype=np.float32)
            block = np.empty((cx.size, sizes.size, 4), dtype=np.float32)
            block[:, :, 0] = cx[:, None]
            block[:, :, 1] = cy[:, None]
            block[:, :, 2] = sizes / np.float32(self.width)
            block[:, :, 3] = sizes / np.float32(self.height)
            parts.append(block.reshape(-1, 4))
        if not parts:
            return np.empty((0, 4), dtype=np.float32)
        return np.concatenate(parts, axis=0)

    def decode(self, loc, conf, output_width: int, output_height: int) -> list[Face]:
        """Decode per-prior offsets (N, 14) and scores (N, 2) into faces on the output size."""
        priors = self.priors
        count = len(priors)
        loc = np.asarray(loc, dtype=np.float32).reshape(-1, 14)
        conf = np.asarray(conf, dtype=np.float32).reshape(-1, 2)
        if len(loc) < count or len(conf) < count:
            raise ValueError("network outputs are shorter than the prior list")
        loc = loc[:count]
        conf = conf[:count]
        v0, v1 = (np.float32(v) for v in VARIANCE)
        ow = np.float32(output_width)
        oh = np.float32(output_height)

        pcx, pcy, pw, ph = priors.T
        cx = pcx + loc[:, 0] * v0 * pw
        cy = pcy + loc[:, 1] * v0 * ph
        w = pw * np.exp(loc[:, 2] * v0)
        h = ph * np.exp(loc[:, 3] * v1)
        two = np.float32(2)
        x1 = (cx - w / two) * ow
        y1 = (cy - h / two) * oh
        x2 = (cx + w / two) * ow
        y2 = (cy + h / two) * oh
        lx = (pcx[:, None] + loc[:, 4::2] * v0 * pw[:, None]) * ow
        ly = (pcy[:, None] + loc[:, 5::2] * v0 * ph[:, None]) * oh

        faces = []
        for bx1, by1, bx2, by2, xs, ys, score in zip(
            x1.tolist(), y1.tolist(), x2.tolist(), y2.tolist(),
            lx.tolist(), ly.tolist(), conf[:, 1].tolist(),
        ):
            points = list(zip(xs, ys))
            faces.append(
                Face(
                    bbox=BBox(bx1, by1, bx2, by2),
                    landmarks=Landmarks(*points),
                    score=score,
                )
            )
        return faces


def input_shape_from_path(model_path: str) -> tuple[int, int]:
    """Read the input width from a name like ``name_320.onnx``; returns (width, height)."""
    start = model_path.find("_") + 1
    end = model_path.find(".onnx")
    digits = model_path[start:] if end < 0 else model_path[start:end]
    match = re.match(r"\s*[+-]?\d+", digits)
    if match is None:
        raise ValueError(f"no input width in model path {model_path!r}")
    width = int(match.group())
    return width, int(0.75 * width)


def face_nms(faces: Iterable[Face], threshold: float) -> list[Face]:
    """Greedy suppression of faces whose IoU with a better one exceeds the threshold."""
    ordered = sorted(faces, key=lambda face: face.score, reverse=True)
    suppressed = [False] * len(ordered)
    for i, best in enumerate(ordered):
        if suppressed[i]:
            continue
        area_i = best.bbox.area()
        for j in range(i + 1, len(ordered)):
            if suppressed[j]:
                continue
            other = ordered[j].bbox
            iw = min(best.bbox.x2, other.x2) - max(best.bbox.x1, other.x1) + 1
            ih = min(best.bbox.y2, other.y2) - max(best.bbox.y1, other.y1) + 1
            if iw <= 0 or ih <= 0:
                continue
            inter = iw * ih
            union = area_i + other.area() - inter
            if union != 0 and inter / union > threshold:
                suppressed[j] = True
    return [face for face, gone in zip(ordered, suppressed) if not gone]


def crop_box(face: Face, image_width: int, image_height: int) -> tuple[int, int, int, int]:
    """The face box clipped to the image, as integer (x, y, width, height)."""
    x_start = max(0, int(face.bbox.x1))
    y_start = max(0, int(face.bbox.y1))
    x_end = min(image_width, int(face.bbox.x2))
    y_end = min(image_height, int(face.bbox.y2))
    width = x_end - x_start
    height = y_end - y_start
    if width < 0 or height < 0:
        raise ValueError("face box lies outside the image")
    return x_start, y_start, width, height


def reference_points(size: int = 224) -> list[Point]:
    """Reference landmark positions for an aligned square face crop of ``size`` pixels."""
    if size <= 0:
        raise ValueError("size must be positive")
    ref = np.asarray(REFERENCE_FACIAL_POINTS, dtype=np.float32)
    scaled = ref / np.float32(112) * np.float32(size)
    return [(float(x), float(y)) for x, y in scaled]


def decode_landmarks(output, crop_width: int, crop_height: int) -> list[tuple[int, int]]:
    """Turn normalised (x, y) pairs into integer pixel positions in the crop."""
    flat = np.asarray(output, dtype=np.float32).ravel()
    num_points = int(flat.size * 0.5)
    pairs = flat[: num_points * 2].reshape(-1, 2)
    cw = np.float32(crop_width)
    ch = np.float32(crop_height)
    return [(int(x * cw), int(y * ch)) for x, y in pairs]


def min_max_normalize(values) -> np.ndarray:
    """Scale values linearly so the minimum maps to 0 and the maximum to 1."""
    arr = np.asarray(values, dtype=np.float32).ravel()
    if arr.size == 0:
        raise ValueError("no values to normalise")
    low = arr.min()
    high = arr.max()
    if high == low:
        raise ValueError("all values are equal")
    scale = np.float32(1.0) / (high - low)
    return (arr - low) * scale


def unit_normalize(values) -> np.ndarray:
    """Scale a vector to unit Euclidean length."""
    arr = np.asarray(values, dtype=np.float32).ravel()
    length = np.sqrt(np.sum(arr * arr, dtype=np.float32))
    if length == 0:
        raise ValueError("cannot normalise a zero vector")
    return arr * (np.float32(1.0) / length)


class LibFaceDetector:
    """Decodes, filters and suppresses raw detector outputs."""

    def __init__(
        self,
        width: int = 320,
        conf_thresh: float = 0.6,
        nms_thresh: float = 0.3,
        keep_top_k: int = 750,
    ):
        self.prior_box = PriorBox(width)
        self.input_shape = (int(width), int(0.75 * width))
        self.conf_thresh = conf_thresh
        self.nms_thresh = nms_thresh
        self.keep_top_k = keep_top_k

    def postprocess(self, loc, conf, output_width: int, output_height: int) -> list[Face]:
        """Faces scoring above the threshold, suppressed and limited to ``keep_top_k``."""
        faces = self.prior_box.decode(loc, conf, output_width, output_height)
        threshold = np.float32(self.conf_thresh)
        faces = [face for face in faces if face.score > threshold]
        if len(faces) > 1:
            faces = face_nms(faces, self.nms_thresh)
            faces = faces[: self.keep_top_k]
        return faces