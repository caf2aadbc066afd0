"""Post-processing of NanoDet-Plus outputs: normalisation, proposals and suppression."""

from __future__ import annotations

import math

import numpy as np

from detpost.boxes import BoxInfo, distribution_distance, nms

STRIDES = (8, 16, 32, 64)
MEAN = np.array([103.53, 116.28, 123.675], dtype=np.float32)
STDS = np.array([57.375, 57.12, 58.395], dtype=np.float32)


def normalize(image) -> np.ndarray:
    """Turn a resized BGR image (H, W, 3) into a normalised BGR (3, H, W) float32 tensor."""
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("expected an image of shape (height, width, 3)")
    out = (image.astype(np.float32) - MEAN) / STDS
    return np.ascontiguousarray(out.transpose(2, 0, 1), dtype=np.float32)


def reg_max_from_shape(last_dim: int, num_class: int) -> int:
    """Largest distribution bin index, from the width of a prediction row."""
    diff = int(last_dim) - int(num_class)
    if diff < 4:
        raise ValueError("prediction rows are too short for the number of classes")
    return diff // 4 - 1


class NanoDetPlusPostprocessor:
    """Turns the single NanoDet-Plus prediction map into boxes on the original frame."""

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

        grid_x, grid_y, stride = [], [], []
        for step in STRIDES:
            gy = math.ceil(self.input_height / step)
            gx = math.ceil(self.input_width / step)
            ys, xs = np.meshgrid(np.arange(gy), np.arange(gx), indexing="ij")
            grid_x.append(xs.ravel())
            grid_y.append(ys.ravel())
            stride.append(np.full(xs.size, step))
        self._grid_x = np.concatenate(grid_x)
        self._grid_y = np.concatenate(grid_y)
        self._stride = np.concatenate(stride)

    @property
    def row_length(self) -> int:
        """Values per prediction row: class scores followed by four distributions."""
        return self.num_class + 4 * (self.reg_max + 1)

    @property
    def num_cells(self) -> int:
        """Grid cells over all strides."""
        return int(self._grid_x.size)

    def generate_proposals(self, preds) -> list[BoxInfo]:
        """Candidate boxes of all strides, in network input coordinates."""
        reg = self.reg_max + 1
        length = self.row_length
        count = self.num_cells
        flat = np.asarray(preds, dtype=np.float32).ravel()
        if flat.size < count * length:
            raise ValueError("prediction map is smaller than the grid")
        rows = flat[: count * length].reshape(count, length)
        cls = rows[:, : self.num_class]
        bins = rows[:, self.num_class :].reshape(count, 4, reg)

        raw_best = cls.max(axis=1)
        positive = raw_best > 0
        best = np.where(positive, raw_best, np.float32(0))
        ids = np.where(positive, cls.argmax(axis=1), 0)
        threshold = np.float32(self.score_threshold)

        proposals = []
        for idx in np.nonzero(best >= threshold)[0]:
            stride = int(self._stride[idx])
            dis = [distribution_distance(bins[idx, k]) * stride for k in range(4)]
            cx = float(self._grid_x[idx] * stride)
            cy = float(self._grid_y[idx] * stride)
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
        preds,
        frame_height: int,
        frame_width: int,
        newh: int,
        neww: int,
        top: int,
        left: int,
    ) -> list[BoxInfo]:
        """Suppressed boxes mapped onto the frame and clipped to it, as integers."""
        kept = nms(self.generate_proposals(preds), self.nms_threshold)
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