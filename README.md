# detpost

The pre- and post-processing steps that sit around the network call in a number
of detection, recognition and segmentation models. You pass in the raw output
arrays from whichever inference engine you use. You get back boxes, points,
polygons, landmarks and feature matches as plain Python and NumPy values.

The only dependency is NumPy.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install .[test]
```

## Modules

| Module | Model family | Main entry points |
| --- | --- | --- |
| `detpost.boxes` | shared helpers | `BoxInfo`, `Letterbox`, `nms`, `nms_boxes`, `letterbox`, `softmax`, `distribution_distance`, `sigmoid`, `read_class_names` |
| `detpost.centernet` | CenterNet heat-map detector | `normalize`, `decode_heatmap`, `rect_nms`, `postprocess`, `Detection` |
| `detpost.crowd` | P2PNet crowd counting | `anchor_points`, `shift`, `pyramid_anchor_points`, `preprocess_size`, `normalize`, `decode_points`, `CrowdPoint` |
| `detpost.dbnet` | DBNet text and barcode detection | `DBPostprocessor`, `contour_score`, `min_area_rect`, `normalize_box`, `unclip`, `RotatedRect` |
| `detpost.faster_rcnn` | Faster R-CNN card detection | `decode_detections`, `format_label`, `CardDetection` |
| `detpost.facedet` | libfacedetection | `PriorBox`, `LibFaceDetector`, `BBox`, `Landmarks`, `Face`, `face_nms`, `crop_box`, `reference_points`, `decode_landmarks`, `input_shape_from_path`, `unit_normalize`, `min_max_normalize` |
| `detpost.features` | face feature gallery | `write_features`, `read_features`, `min_euclid_distance`, `max_cosine_distance`, `list_files`, `person_name`, `image_name`, `RecThreshold` |
| `detpost.yunet` | YuNet detection and SFace matching | `YuNetPostprocessor`, `similarity_transform`, `match`, `DisType` |
| `detpost.nanodet` | NanoDet | `normalize`, `NanoDetPostprocessor` |
| `detpost.nanodet_plus` | NanoDet-Plus | `normalize`, `reg_max_from_shape`, `NanoDetPlusPostprocessor` |
| `detpost.picodet` | PP-PicoDet | `normalize`, `strides`, `PicoDetPostprocessor` |
| `detpost.multiyolo` | YOLOv5 with a segmentation head | `normalize`, `combine`, `MultiYoloPostprocessor` |

## Examples

### Letterboxing and non-maximum suppression

`letterbox` works out the scaled size and the padding needed to fit an image
into a network input. `nms` sorts boxes by score. It then drops every box whose
overlap with a higher-scoring box reaches the threshold.

```python
from detpost.boxes import BoxInfo, letterbox, nms

geometry = letterbox(480, 640, 320, 320, keep_ratio=True)
print(geometry.newh, geometry.neww, geometry.top, geometry.left)

boxes = [
    BoxInfo(10, 10, 50, 50, 0.9, 0),
    BoxInfo(12, 12, 52, 52, 0.8, 0),
    BoxInfo(100, 100, 140, 140, 0.7, 1),
]
kept = nms(boxes, 0.5)
```

### NanoDet-Plus post-processing

```python
from detpost.nanodet_plus import NanoDetPlusPostprocessor, reg_max_from_shape

reg_max = reg_max_from_shape(last_dim=112, num_class=80)
post = NanoDetPlusPostprocessor(
    input_height=320, input_width=320, num_class=80,
    reg_max=reg_max, score_threshold=0.5, nms_threshold=0.5,
)
# preds: the model's single output, (num_points, num_class + 4 * (reg_max + 1))
# boxes = post.process(preds, frame_height, frame_width, newh, neww, top, left)
```

### Face features on disk

`write_features` stores a matrix of face features with one name per row.
`read_features` reads the file back.

```python
import numpy as np
from detpost.features import write_features, read_features, max_cosine_distance

gallery = np.eye(3, dtype=np.float32)
write_features("faces.bin", gallery, ["alice", "bob", "carol"])

features, names = read_features("faces.bin")
index, scores = max_cosine_distance(features, np.array([0, 1, 0], dtype=np.float32))
print(names[index])
```

### Comparing SFace embeddings

```python
import numpy as np
from detpost.yunet import DisType, match

a = np.random.rand(128).astype(np.float32)
b = np.random.rand(128).astype(np.float32)
print(match(a, b, DisType.FR_COSINE), match(a, b, DisType.FR_NORM_L2))
```

## What the package does not do

- It does not load or run models. Inference stays with your own engine.
- It does not read, write, resize or display images. It also draws nothing on
  them. `letterbox` only computes sizes and padding, and the `normalize`
  functions expect an image that has already been resized.
- `DBPostprocessor` does not trace contours itself. You pass in the contours of
  the thresholded probability map.
- Licence-plate detection and character recognition are not included.
- There is no command-line program.

## Running the tests

```
pytest
```