"""Post-processing of NanoDet outputs: normalisation, proposals and suppression."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from detpost.boxes import BoxInfo, distribution_distance, nms_boxes

STRIDES = (8, 16, 32)
INPUT_SHAPES = (320, 416)
REG_MAX = 7
MEAN = np.array([103.53, 116.28, 123.675], dtype=np.float32)
STD = np.array([57.375, 57.12, 58.395], dtype=np.float32)

Proposal = tuple[int, float, tuple[int, int, int, int]]


def normalize(image) -> np.ndarray:
    """Turn a resized BGR image (H, W, 3) into a normalised BGR (3, H, W) float32 tensor."""
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("expected an image of shape (height, width, 3)")
    out = (image.astype(np.float32) - MEAN) / STD
    return np.ascontiguousarray(out.transpose(2, 0, 1), dtype=np.float32)


class NanoDetPostprocessor:
    """Turns the six NanoDet output maps into boxes on the original frame."""

    def __init__(
        self,
        input_shape: int = 416,
        prob_threshold: float = 0.35,
        iou_threshold: float = 0.6,
        num_class: int = 80,
    ):
        if input_shape not in INPUT_SHAPES:
            raise ValueError(f"input shape must be one of {INPUT_SHAPES}")
        if num_class <= 0:
            raise ValueError("num_class must be positive")
        self.input_shape = (int(input_shape), int(input_shape))
        self.prob_threshold = prob_threshold
        self.iou_threshold = iou_threshold
        self.num_class = int(num_class)
        self.reg_max = REG_MAX
        self.model_name = "nanodet.onnx" if input_shape == 320 else "nanodet_m.onnx"

    def generate_proposals(self, stride: int, scores, boxes) -> list[Proposal]:
        """Candidates of one stride as (class_id, score, (x, y, width, height))."""
        grid_y = self.input_shape[0] // stride
        grid_x = self.input_shape[1] // stride
        count = grid_y * grid_x
        reg = self.reg_max + 1

        scores = np.asarray(scores, dtype=np.float32)
        if scores.ndim == 0:
            raise ValueError("scores must be an array")
        scores = scores.reshape(-1, scores.shape[-1])
        if len(scores) < count or scores.shape[1] < self.num_class:
            raise ValueError("score map is smaller than the grid")
        flat_boxes = np.asarray(boxes, dtype=np.float32).ravel()
        if flat_boxes.size < count * 4 * reg:
            raise ValueError("box map is smaller than the grid")
        box_bins = flat_boxes[: count * 4 * reg].reshape(count, 4, reg)

        cls = scores[:count, : self.num_class]
        ids = cls.argmax(axis=1)
        best = cls.max(axis=1)
        threshold = np.float32(self.prob_threshold)

        proposals: list[Proposal] = []
        for idx in np.nonzero(best >= threshold)[0]:
            i, j = divmod(int(idx), grid_x)
            dis = [distribution_distance(box_bins[idx, k]) * stride for k in range(4)]
            cx = (j + 0.5) * stride - 0.5
            cy = (i + 0.5) * stride - 0.5
            x0 = cx - dis[0]
            y0 = cy - dis[1]
            x1 = cx + dis[2]
            y1 = cy + dis[3]
            proposals.append(
                (int(ids[idx]), float(best[idx]), (int(x0), int(y0), int(x1 - x0), int(y1 - y0)))
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
        """Gather proposals of all strides, suppress overlaps and map boxes onto the frame."""
        outputs = list(outputs)
        if len(outputs) != 2 * len(STRIDES):
            raise ValueError(f"expected {2 * len(STRIDES)} output maps")
        proposals: list[Proposal] = []
        for n, stride in enumerate(STRIDES):
            proposals.extend(self.generate_proposals(stride, outputs[2 * n], outputs[2 * n + 1]))

        keep = nms_boxes(
            [p[2] for p in proposals],
            [p[1] for p in proposals],
            float(np.float32(self.prob_threshold)),
            self.iou_threshold,
        )
        ratioh = float(np.float32(frame_height) / np.float32(newh))
        ratiow = float(np.float32(frame_width) / np.float32(neww))
        results = []
        for idx in keep:
            label, score, (x, y, w, h) = proposals[idx]
            results.append(
                BoxInfo(
                    x1=int(max((x - left) * ratiow, 0.0)),
                    y1=int(max((y - top) * ratioh, 0.0)),
                    x2=int(min((x - left + w) * ratiow, float(frame_width))),
                    y2=int(min((y - top + h) * ratioh, float(frame_height))),
                    score=score,
                    label=label,
                )
            )
        return results