"""Anchor generation and point decoding for P2PNet crowd counting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)
PYRAMID_LEVELS = (3,)
ANCHOR_ROWS = 2
ANCHOR_LINES = 2


@dataclass(frozen=True)
class CrowdPoint:
    """A detected head position and its probability."""

    x: int
    y: int
    prob: float


def anchor_points(stride: int, rows: int, lines: int) -> np.ndarray:
    """Anchor offsets inside one stride cell, shape (rows * lines, 2)."""
    row_step = stride / rows
    line_step = stride / lines
    half = stride // 2
    xs = (np.arange(1, lines + 1) - 0.5) * line_step - half
    ys = (np.arange(1, rows + 1) - 0.5) * row_step - half
    grid_x, grid_y = np.meshgrid(xs, ys)
    return np.stack([grid_x.ravel(), grid_y.ravel()], axis=1)


def shift(width: int, height: int, stride: int, anchors) -> np.ndarray:
    """Replicate anchors over a width x height grid of cells, row by row."""
    anchors = np.asarray(anchors, dtype=np.float64).reshape(-1, 2)
    xs = (np.arange(width) + 0.5) * stride
    ys = (np.arange(height) + 0.5) * stride
    grid_x, grid_y = np.meshgrid(xs, ys)
    shifts = np.stack([grid_x.ravel(), grid_y.ravel()], axis=1)
    return (shifts[:, None, :] + anchors[None, :, :]).reshape(-1, 2)


def pyramid_anchor_points(
    image_width: int,
    image_height: int,
    pyramid_levels: Sequence[int],
    rows: int,
    lines: int,
) -> np.ndarray:
    """All anchor points for an image over the given pyramid levels."""
    parts = []
    for level in pyramid_levels:
        stride = 2**level
        new_w = (image_width + stride - 1) // stride
        new_h = (image_height + stride - 1) // stride
        parts.append(shift(new_w, new_h, stride, anchor_points(stride, rows, lines)))
    if not parts:
        return np.empty((0, 2))
    return np.concatenate(parts, axis=0)


def preprocess_size(width: int, height: int) -> tuple[int, int]:
    """Network input size: each side rounded down to a multiple of 128."""
    return width // 128 * 128, height // 128 * 128


def normalize(image) -> np.ndarray:
    """Turn a resized BGR uint8 image (H, W, 3) into normalised RGB float32 (H, W, 3)."""
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("expected an image of shape (height, width, 3)")
    rgb = image[..., ::-1].astype(np.float32)
    return ((rgb / 255.0 - MEAN) / STD).astype(np.float32)


def decode_points(
    scores,
    coords,
    image_width: int,
    image_height: int,
    frame_width: int,
    frame_height: int,
    conf_threshold: float,
) -> list[CrowdPoint]:
    """Turn per-anchor scores and (dx, dy) offsets into points on the original frame."""
    scores = np.asarray(scores, dtype=np.float64).ravel()
    coords = np.asarray(coords, dtype=np.float64).reshape(-1, 2)
    anchors = pyramid_anchor_points(
        image_width, image_height, PYRAMID_LEVELS, ANCHOR_ROWS, ANCHOR_LINES
    )
    if len(coords) < len(scores) or len(anchors) < len(scores):
        raise ValueError("more proposals than coordinates or anchors")
    points = []
    for i in np.nonzero(scores > conf_threshold)[0]:
        x = (coords[i, 0] + anchors[i, 0]) / image_width * frame_width
        y = (coords[i, 1] + anchors[i, 1]) / image_height * frame_height
        points.append(CrowdPoint(int(x), int(y), float(scores[i])))
    return points