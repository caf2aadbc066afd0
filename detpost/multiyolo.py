"""Post-processing of the multi-task YOLOv5 model: detection boxes and a segmentation map."""

from __future__ import annotations

import numpy as np

from detpost.boxes import BoxInfo, nms

STRIDES = (8.0, 16.0, 32.0)
ANCHORS = (
    ((10.0, 13.0), (16.0, 30.0), (33.0, 23.0)),
    ((30.0, 61.0), (62.0, 45.0), (59.0, 119.0)),
    ((116.0, 90.0), (156.0, 198.0), (373.0, 326.0)),
)

CITYSCAPES_CLASSES = (
    "road", "sidewalk", "building", "wall", "fence",
    "pole", "traffic light", "traffic sign", "vegetation",
    "terrain", "sky", "person", "rider", "car", "truck",
    "bus", "train", "motorcycle", "bicyle",
)

CITYSCAPES_COLORMAP = np.array(
    [
        [128, 64, 128], [244, 35, 232], [70, 70, 70], [102, 102, 156],
        [190, 153, 153], [153, 153, 153], [250, 170, 30], [220, 220, 0],
        [107, 142, 35], [152, 251, 152], [0, 130, 180], [220, 20, 60],
        [255, 0, 0], [0, 0, 142], [0, 0, 70], [0, 60, 100], [0, 80, 100],
        [0, 0, 230], [119, 11, 32],
    ],
    dtype=np.uint8,
)


def normalize(image) -> np.ndarray:
    """Turn a letterboxed BGR uint8 image (H, W, 3) into an RGB (3, H, W) tensor in [0, 1]."""
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("expected an image of shape (height, width, 3)")
    rgb = image[..., ::-1].astype(np.float32) / np.float32(255.0)
    return np.ascontiguousarray(rgb.transpose(2, 0, 1), dtype=np.float32)


def combine(frame, segmentation) -> np.ndarray:
    """Stack the annotated frame and its segmentation: vertically for wide frames, else side by side."""
    frame = np.asarray(frame)
    segmentation = np.asarray(segmentation)
    if frame.ndim < 2:
        raise ValueError("expected an image")
    if frame.shape[0] < frame.shape[1]:
        return np.vstack([frame, segmentation])
    return np.hstack([frame, segmentation])


class MultiYoloPostprocessor:
    """Decodes the detection head and the segmentation head of the model."""

    def __init__(
        self,
        input_height: int,
        input_width: int,
        num_class: int,
        obj_threshold: float = 0.3,
        nms_threshold: float = 0.5,
    ):
        if input_height <= 0 or input_width <= 0:
            raise ValueError("input size must be positive")
        if num_class <= 0:
            raise ValueError("num_class must be positive")
        self.input_height = int(input_height)
        self.input_width = int(input_width)
        self.num_class = int(num_class)
        self.obj_threshold = obj_threshold
        self.nms_threshold = nms_threshold
        self._build_layout()

    def _build_layout(self) -> None:
        grid_x, grid_y, stride, anchor_w, anchor_h = [], [], [], [], []
        for step, anchors in zip(STRIDES, ANCHORS):
            gx = int(self.input_width / step)
            gy = int(self.input_height / step)
            ys, xs = np.meshgrid(np.arange(gy), np.arange(gx), indexing="ij")
            cells = xs.size
            for aw, ah in anchors:
                grid_x.append(xs.ravel())
                grid_y.append(ys.ravel())
                stride.append(np.full(cells, step))
                anchor_w.append(np.full(cells, aw))
                anchor_h.append(np.full(cells, ah))
        self._grid_x = np.concatenate(grid_x).astype(np.float32)
        self._grid_y = np.concatenate(grid_y).astype(np.float32)
        self._stride = np.concatenate(stride).astype(np.float32)
        self._anchor_w = np.concatenate(anchor_w).astype(np.float32)
        self._anchor_h = np.concatenate(anchor_h).astype(np.float32)

    @property
    def num_proposals(self) -> int:
        """Number of prediction rows the detection head yields."""
        return int(self._grid_x.size)

    def decode_boxes(
        self,
        preds,
        frame_height: int,
        frame_width: int,
        newh: int,
        neww: int,
        padh: int,
        padw: int,
    ) -> list[BoxInfo]:
        """Rows of (cx, cy, w, h, objectness, class scores...) into suppressed boxes on the frame."""
        preds = np.asarray(preds, dtype=np.float32)
        if preds.ndim == 0:
            raise ValueError("predictions must be an array")
        preds = preds.reshape(-1, preds.shape[-1])
        if preds.shape[1] < 5 + self.num_class:
            raise ValueError("prediction rows are too short for the number of classes")
        count = self.num_proposals
        if len(preds) < count:
            raise ValueError("fewer prediction rows than grid cells")
        preds = preds[:count]

        cls = preds[:, 5 : 5 + self.num_class]
        raw_best = cls.max(axis=1)
        positive = raw_best > 0
        best = np.where(positive, raw_best, np.float32(0))
        ids = np.where(positive, cls.argmax(axis=1), 0)

        two = np.float32(2.0)
        half = np.float32(0.5)
        cx = (preds[:, 0] * two - half + self._grid_x) * self._stride
        cy = (preds[:, 1] * two - half + self._grid_y) * self._stride
        w = (preds[:, 2] * two) ** 2 * self._anchor_w
        h = (preds[:, 3] * two) ** 2 * self._anchor_h

        ratioh = float(np.float32(frame_height) / np.float32(newh))
        ratiow = float(np.float32(frame_width) / np.float32(neww))

        boxes = []
        for k in np.nonzero(preds[:, 4] > np.float32(self.obj_threshold))[0]:
            bx, by, bw, bh = float(cx[k]), float(cy[k]), float(w[k]), float(h[k])
            boxes.append(
                BoxInfo(
                    x1=(bx - padw - 0.5 * bw) * ratiow,
                    y1=(by - padh - 0.5 * bh) * ratioh,
                    x2=(bx - padw + 0.5 * bw) * ratiow,
                    y2=(by - padh + 0.5 * bh) * ratioh,
                    score=float(best[k]),
                    label=int(ids[k]),
                )
            )
        return nms(boxes, self.nms_threshold)

    def segment(
        self,
        seg,
        frame_height: int,
        frame_width: int,
        newh: int,
        neww: int,
        padh: int,
        padw: int,
    ) -> np.ndarray:
        """Colour every frame pixel by the most likely class of the segmentation map (C, H, W)."""
        if frame_height <= 0 or frame_width <= 0:
            raise ValueError("frame size must be positive")
        seg = np.asarray(seg, dtype=np.float32)
        area = self.input_height * self.input_width
        if seg.size == 0 or seg.size % area:
            raise ValueError("segmentation map does not match the input size")
        seg = seg.reshape(-1, self.input_height, self.input_width)
        if seg.shape[0] > len(CITYSCAPES_COLORMAP):
            raise ValueError("more segmentation classes than colours")

        ratioh = np.float32(newh) / np.float32(frame_height)
        ratiow = np.float32(neww) / np.float32(frame_width)
        ys = (np.arange(frame_height, dtype=np.float32) * ratioh).astype(np.int64) + padh
        xs = (np.arange(frame_width, dtype=np.float32) * ratiow).astype(np.int64) + padw
        if ys.min() < 0 or xs.min() < 0 or ys.max() >= self.input_height or xs.max() >= self.input_width:
            raise ValueError("frame maps outside the segmentation map")

        sampled = seg[:, ys[:, None], xs[None, :]]
        best = sampled.max(axis=0)
        ids = np.where(best > -1, sampled.argmax(axis=0), 0)
        return CITYSCAPES_COLORMAP[ids].astype(np.uint8)