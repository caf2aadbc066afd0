"""Pre- and post-processing for detection, recognition and segmentation network outputs."""

__version__ = "0.1.0"

__all__ = [
    "boxes",
    "centernet",
    "crowd",
    "dbnet",
    "faster_rcnn",
    "facedet",
    "features",
    "yunet",
    "nanodet",
    "picodet",
    "multiyolo",
    "nanodet_plus",
]