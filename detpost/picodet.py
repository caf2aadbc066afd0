"""Post-processing of PicoDet outputs: normalisation, proposals and suppression."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from detpost.boxes import BoxInfo, distribution_distance, nms

MEAN = np.array([103.53, 116.28, 123.675], dtype=np.float64)
STDS = np.array([57.375, 57.12, 58.395], dtype=np.float64)


def normalize(image) -> np.ndarray:
    """Turn a resized BGR image (H, W, 3) into a normalised BGR (3, H, W) float32 tensor."""
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("expected an image of shape (height, width, 3)")
    pix = image.astype(np.float64)
    out = (pix / 255.0 - MEAN / 255.0) / (STDS / 255.0)
    return np.ascontiguousarray(out.transpose(2, 0, 1), dtype=np.float32)


def strides(num_outs: int) -> list[int]:
    """Stride of each output level: 8, 16, 32, ..."""
    if num_outs < 0:
        raise ValueError("num_outs must not be negative")
    return [8 * 2**i for i in range(num_outs)]


class PicoDetPostprocessor:
    """Turns PicoDet score and box maps into boxes on the original frame."""

    def __init__(
        self,
        input_height: int,
        input_width: int,
        num_class: int,
        reg_max: int = 7,
        score_threshold: float = 0.5,
        nms_threshold: float = 0.5,
    ):
        if input_height <= 0 or input_width <= 0:
            raise ValueError("input size must be positive")
        if num_class <= 0:
            raise ValueError("num_class must be positive")
        if reg_max < 0:
            raise ValueError("reg_max must not be negative")
        self.input_height = int(input_height)
        self.input_width = int(input_width)
        self.num_class = int(num_class)
        self.reg_max = int(reg_max)
        self.score_threshold = score_threshold
        self.nms_threshold = nms_threshold

    def generate_proposals(self, stride: int, scores, boxes) -> list[BoxInfo]:
        """Candidate boxes of one stride, in network input coordinates."""
        grid_y = math.ceil(self.input_height / stride)
        grid_x = math.ceil(self.input_width / stride)
        count = grid_y * grid_x
        reg = self.reg_max + 1

        flat_scores = np.asarray(scores, dtype=np.float32).ravel()
        if flat_scores.size < count * self.num_class:
            raise ValueError("score map is smaller than the grid")
        flat_boxes = np.asarray(boxes, dtype=np.float32).ravel()
        if flat_boxes.size < count * 4 * reg:
            raise ValueError("box map is smaller than the grid")
        cls = flat_scores[: count * self.num_class].reshape(count, self.num_class)
        box_bins = flat_boxes[: count * 4 * reg].reshape(count, 4, reg)

        raw_best = cls.max(axis=1)
        positive = raw_best > 0
        best = np.where(positive, raw_best, np.float32(0))
        ids = np.where(positive, cls.argmax(axis=1), 0)
        threshold = np.float32(self.score_threshold)

        proposals = []
        for idx in np.nonzero(best >= threshold)[0]:
            i, j = divmod(int(idx), grid_x)
            dis = [distribution_distance(box_bins[idx, k]) * stride for k in range(4)]
            cx = (j + 0.5) * stride - 0.5
            cy = (i + 0.5) * stride - 0.5
            proposals.append(
                BoxInfo(
                    x1=cx - dis[0],
                    y1=cy - dis[1],
                    x2=cx + dis[2],
                    y2=cy + dis[3],
                    score=float(best[idx]),
                    label=int(ids[idx]),
                )
            )
        return proposals

    def process(
        self,
        outputs: Sequence,
        frame_height: int,
        frame_width: int,
        newh: int,
        neww: int,
        top: int,
        left: int,
    ) -> list[BoxInfo]:
        """Score maps first, then box maps; returns suppressed boxes mapped onto the frame."""
        outputs = list(outputs)
        if not outputs or len(outputs) % 2:
            raise ValueError("expected an even, non-zero number of output maps")
        num_outs = len(outputs) // 2
        proposals: list[BoxInfo] = []
        for i, stride in enumerate(strides(num_outs)):
            proposals.extend(self.generate_proposals(stride, outputs[i], outputs[i + num_outs]))

        kept = nms(proposals, self.nms_threshold)
        ratioh = float(np.float32(frame_height) / np.float32(newh))
        ratiow = float(np.float32(frame_width) / np.float32(neww))
        return [
            BoxInfo(
                x1=int(max((box.x1 - left) * ratiow, 0.0)),
                y1=int(max((box.y1 - top) * ratioh, 0.0)),
                x2=int(min((box.x2 - left) * ratiow, float(frame_width))),
                y2=int(min((box.y2 - top) * ratioh, float(frame_height))),
                score=box.score,
                label=box.label,
            )
            for box in kept
        ]