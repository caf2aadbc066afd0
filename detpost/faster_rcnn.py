"""Decoding of Faster R-CNN card-detector outputs."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CardDetection:
    """An integer (x, y, width, height) card box with its score."""

    x: int
    y: int
    width: int
    height: int
    score: float

    @property
    def label(self) -> str:
        return format_label(self.score)


def format_label(score: float) -> str:
    """Caption drawn next to a detected card."""
    return f"card:{score:.2f}"


def decode_detections(outputs, frame_width: int, frame_height: int, conf_threshold: float) -> list[CardDetection]:
    """Turn rows of [_, class, score, left, top, right, bottom] into boxes on the frame."""
    if isinstance(outputs, np.ndarray):
        outputs = [outputs]
    threshold = np.float32(conf_threshold)
    cols = np.float32(frame_width)
    rows_f = np.float32(frame_height)
    detections = []
    for output in outputs:
        arr = np.asarray(output, dtype=np.float32)
        if arr.ndim == 0 or arr.shape[-1] < 7:
            raise ValueError("each detection row needs at least 7 values")
        for row in arr.reshape(-1, arr.shape[-1]):
            score = row[2]
            if not score > threshold:
                continue
            left = int(row[3] * cols)
            top = int(row[4] * rows_f)
            right = int(row[5] * cols)
            bottom = int(row[6] * rows_f)
            detections.append(CardDetection(left, top, right - left, bottom - top, float(score)))
    return detections