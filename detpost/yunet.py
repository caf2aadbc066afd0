"""YuNet face-detection post-processing and SFace alignment and matching."""

from __future__ import annotations

import enum

import numpy as np

from detpost.boxes import nms_boxes

MIN_SIZES = ((10.0, 16.0, 24.0), (32.0, 48.0), (64.0, 96.0), (128.0, 192.0, 256.0))
STEPS = (8, 16, 32, 64)
VARIANCE = (0.1, 0.2)

ALIGNED_POINTS = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float32,
)
ALIGNED_MEAN = np.array([56.0262, 71.9008], dtype=np.float32)


class DisType(enum.IntEnum):
    """How two face features are compared."""

    FR_COSINE = 0
    FR_NORM_L2 = 1


class YuNetPostprocessor:
    """Decodes YuNet outputs into rows of
    (x, y, w, h, re_x, re_y, le_x, le_y, nt_x, nt_y, rcm_x, rcm_y, lcm_x, lcm_y, score).
    """

    def __init__(
        self,
        score_threshold: float = 0.9,
        nms_threshold: float = 0.3,
        input_width: int = 320,
        input_height: int = 320,
        top_k: int = 5000,
    ):
        self.score_threshold = score_threshold
        self.nms_threshold = nms_threshold
        self.top_k = top_k
        self.set_input_size(input_width, input_height)

    def set_input_size(self, width: int, height: int) -> None:
        """Change the network input size and regenerate the priors."""
        if width <= 0 or height <= 0:
            raise ValueError("input size must be positive")
        self.input_width = int(width)
        self.input_height = int(height)
        self.priors = self._generate_priors()

    def _generate_priors(self) -> np.ndarray:
        w = ((self.input_width + 1) // 2) // 2
        h = ((self.input_height + 1) // 2) // 2
        parts = []
        for min_sizes, step in zip(MIN_SIZES, STEPS):
            w //= 2
            h //= 2
            if w <= 0 or h <= 0:
                continue
            ys, xs = np.meshgrid(np.arange(h), np.arange(w), indexing="ij")
            cx = ((xs.ravel().astype(np.float32) + np.float32(0.5)) * step / np.float32(self.input_width))
            cy = ((ys.ravel().astype(np.float32) + np.float32(0.5)) * step / np.float32(self.input_height))
            sizes = np.asarray(min_sizes, dtype=np.float32)
            block = np.empty((cx.size, sizes.size, 4), dtype=np.float32)
            block[:, :, 0] = cx[:, None]
            block[:, :, 1] = cy[:, None]
            block[:, :, 2] = sizes / np.float32(self.input_width)
            block[:, :, 3] = sizes / np.float32(self.input_height)
            parts.append(block.reshape(-1, 4))
        if not parts:
            return np.empty((0, 4), dtype=np.float32)
        return np.concatenate(parts, axis=0)

    def process(self, loc, conf, iou) -> np.ndarray:
        """Decode every prior, then suppress overlaps when more than one face is present."""
        priors = self.priors
        count = len(priors)
        loc = np.asarray(loc, dtype=np.float32).reshape(-1, 14)
        conf = np.asarray(conf, dtype=np.float32).reshape(-1, 2)
        iou = np.asarray(iou, dtype=np.float32).ravel()
        if min(len(loc), len(conf), len(iou)) < count:
            raise ValueError("network outputs are shorter than the prior list")
        loc, conf, iou = loc[:count], conf[:count], iou[:count]

        v0, v1 = (np.float32(v) for v in VARIANCE)
        width = np.float32(self.input_width)
        height = np.float32(self.input_height)
        px, py, pw, ph = priors.T

        with np.errstate(invalid="ignore"):
            score = np.sqrt(conf[:, 1] * np.clip(iou, 0.0, 1.0))
        cx = (px + loc[:, 0] * v0 * pw) * width
        cy = (py + loc[:, 1] * v0 * ph) * height
        w = pw * np.exp(loc[:, 2] * v0) * width
        h = ph * np.exp(loc[:, 3] * v1) * height

        faces = np.empty((count, 15), dtype=np.float32)
        faces[:, 0] = cx - w / np.float32(2)
        faces[:, 1] = cy - h / np.float32(2)
        faces[:, 2] = w
        faces[:, 3] = h
        faces[:, 4:14:2] = (px[:, None] + loc[:, 4::2] * v0 * pw[:, None]) * width
        faces[:, 5:14:2] = (py[:, None] + loc[:, 5::2] * v0 * ph[:, None]) * height
        faces[:, 14] = score

        if count <= 1:
            return faces
        rects = [tuple(int(v) for v in row) for row in faces[:, :4].tolist()]
        keep = nms_boxes(
            rects,
            faces[:, 14].tolist(),
            self.score_threshold,
            self.nms_threshold,
            self.top_k,
        )
        return faces[keep] if keep else np.empty((0, 15), dtype=np.float32)


def similarity_transform(src_points) -> np.ndarray:
    """2x3 similarity matrix that maps five facial landmarks onto the aligned 112x112 template."""
    src = np.asarray(src_points, dtype=np.float32)
    if src.size != 10:
        raise ValueError("expected five (x, y) landmark points")
    src = src.reshape(5, 2)
    src_mean = src.sum(axis=0) / np.float32(5)
    src_demean = (src - src_mean).astype(np.float64)
    dst_demean = (ALIGNED_POINTS - ALIGNED_MEAN).astype(np.float64)

    a = dst_demean.T @ src_demean / 5
    d = np.array([1.0, 1.0])
    if np.linalg.det(a) < 0:
        d[1] = -1.0
    u, s, vt = np.linalg.svd(a)
    tol = s.max() * 2 * float(np.finfo(np.float32).tiny)
    rank = int(np.sum(s > tol))
    if rank == 1 and np.linalg.det(u) * np.linalg.det(vt) > 0:
        rotation = u @ vt
    elif rank == 1:
        rotation = u @ np.diag([d[0], -1.0]) @ vt
    else:
        rotation = u @ np.diag(d) @ vt

    variance = float(np.sum(src_demean * src_demean) / 5)
    if variance == 0:
        raise ValueError("landmark points are all identical")
    scale = float(s @ d) / variance
    translation = ALIGNED_MEAN.astype(np.float64) - scale * (rotation @ src_mean.astype(np.float64))
    return np.hstack([rotation * scale, translation[:, None]])


def match(feature1, feature2, dis_type=DisType.FR_COSINE) -> float:
    """Cosine similarity or L2 distance between two features after unit normalisation."""
    try:
        kind = DisType(int(dis_type))
    except (ValueError, TypeError):
        raise ValueError(f"invalid parameter {dis_type}") from None
    a = np.asarray(feature1, dtype=np.float64).ravel()
    b = np.asarray(feature2, dtype=np.float64).ravel()
    if a.size != b.size:
        raise ValueError("features have different lengths")
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        raise ValueError("cannot normalise a zero feature")
    a = a / norm_a
    b = b / norm_b
    if kind is DisType.FR_COSINE:
        return float(np.sum(a * b))
    return float(np.linalg.norm(a - b))