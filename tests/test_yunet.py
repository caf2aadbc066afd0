import math

import numpy as np
import pytest

from detpost.yunet import (
    ALIGNED_POINTS,
    DisType,
    YuNetPostprocessor,
    match,
    similarity_transform,
)


def _outputs(count):
    loc = np.zeros((count, 14), dtype=np.float32)
    conf = np.zeros((count, 2), dtype=np.float32)
    iou = np.ones(count, dtype=np.float32)
    return loc, conf, iou


def test_prior_count_small_input():
    proc = YuNetPostprocessor(input_width=64, input_height=64)
    assert proc.priors.shape == (235, 4)


def test_set_input_size_regenerates():
    proc = YuNetPostprocessor(input_width=64, input_height=64)
    small = len(proc.priors)
    proc.set_input_size(128, 96)
    assert len(proc.priors) > small
    assert (proc.input_width, proc.input_height) == (128, 96)


def test_single_face_decoded():
    proc = YuNetPostprocessor(0.5, 0.3, 64, 64)
    loc, conf, iou = _outputs(len(proc.priors))
    conf[0, 1] = 0.81
    iou[0] = 5.0  # clamped to 1
    faces = proc.process(loc, conf, iou)
    assert faces.shape == (1, 15)
    assert faces[0, 14] == pytest.approx(0.9, abs=1e-6)
    # first prior: centre at half a stride of 8, size 10
    assert faces[0, 0] == pytest.approx(-1.0)
    assert faces[0, 2] == pytest.approx(10.0)
    assert faces[0, 4] == pytest.approx(4.0)


def test_overlapping_faces_suppressed():
    proc = YuNetPostprocessor(0.5, 0.3, 64, 64)
    loc, conf, iou = _outputs(len(proc.priors))
    conf[0, 1] = 0.95
    conf[1, 1] = 0.92
    faces = proc.process(loc, conf, iou)
    assert len(faces) == 1
    assert faces[0, 14] == pytest.approx(math.sqrt(0.95), abs=1e-6)


def test_looser_threshold_keeps_both():
    proc = YuNetPostprocessor(0.5, 0.5, 64, 64)
    loc, conf, iou = _outputs(len(proc.priors))
    conf[0, 1] = 0.95
    conf[1, 1] = 0.92
    faces = proc.process(loc, conf, iou)
    assert len(faces) == 2
    assert faces[0, 14] >= faces[1, 14]


def test_no_faces():
    proc = YuNetPostprocessor(0.5, 0.3, 64, 64)
    faces = proc.process(*_outputs(len(proc.priors)))
    assert faces.shape == (0, 15)


def test_short_outputs_rejected():
    proc = YuNetPostprocessor(0.5, 0.3, 64, 64)
    with pytest.raises(ValueError):
        proc.process(*_outputs(10))


def _apply(matrix, points):
    pts = np.asarray(points, dtype=np.float64)
    return pts @ matrix[:, :2].T + matrix[:, 2]


def test_similarity_transform_identity_points():
    matrix = similarity_transform(ALIGNED_POINTS)
    assert matrix.shape == (2, 3)
    np.testing.assert_allclose(_apply(matrix, ALIGNED_POINTS), ALIGNED_POINTS, atol=1e-2)


def test_similarity_transform_recovers_template():
    angle = math.radians(30)
    rot = np.array([[math.cos(angle), -math.sin(angle)], [math.sin(angle), math.cos(angle)]])
    src = 0.5 * ALIGNED_POINTS.astype(np.float64) @ rot.T + np.array([100.0, 50.0])
    matrix = similarity_transform(src)
    np.testing.assert_allclose(_apply(matrix, src), ALIGNED_POINTS, atol=1e-2)


def test_similarity_transform_wrong_count():
    with pytest.raises(ValueError):
        similarity_transform([[0.0, 0.0], [1.0, 1.0]])


def test_match_identical():
    feat = [0.3, -1.2, 2.5, 0.7]
    assert match(feat, feat, DisType.FR_COSINE) == pytest.approx(1.0)
    assert match(feat, feat, DisType.FR_NORM_L2) == pytest.approx(0.0)


def test_match_scale_invariant_and_orthogonal():
    assert match([1.0, 0.0], [0.0, 5.0], DisType.FR_COSINE) == pytest.approx(0.0)
    assert match([2.0, 0.0], [0.0, 3.0], DisType.FR_NORM_L2) == pytest.approx(math.sqrt(2))
    assert match([1.0, 2.0], [10.0, 20.0], 0) == pytest.approx(1.0)


def test_match_invalid_type():
    with pytest.raises(ValueError):
        match([1.0], [1.0], 7)