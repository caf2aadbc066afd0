import numpy as np
import pytest

from detpost.facedet import (
    REFERENCE_FACIAL_POINTS,
    BBox,
    Face,
    LibFaceDetector,
    Landmarks,
    PriorBox,
    crop_box,
    decode_landmarks,
    face_nms,
    input_shape_from_path,
    min_max_normalize,
    reference_points,
    unit_normalize,
)


def _face(x1, y1, x2, y2, score):
    pts = [(0.0, 0.0)] * 5
    return Face(BBox(x1, y1, x2, y2), Landmarks(*pts), score)


def test_prior_count_for_320():
    pb = PriorBox(320)
    assert pb.priors.shape == (4385, 4)


def test_priors_are_normalised():
    pb = PriorBox(320)
    assert np.all(pb.priors[:, :2] > 0)
    assert np.all(pb.priors[:, :2] < 1.01)
    assert pb.height == int(0.75 * 320)


def test_input_shape_from_path():
    assert input_shape_from_path("./YuFaceDetectNet_320.onnx") == (320, 240)


def test_input_shape_from_path_without_number():
    with pytest.raises(ValueError):
        input_shape_from_path("model_abc.onnx")


def test_bbox_area_grows_and_is_translation_invariant():
    small = BBox(0.0, 0.0, 4.0, 4.0)
    big = BBox(0.0, 0.0, 8.0, 8.0)
    moved = BBox(10.0, 20.0, 14.0, 24.0)
    assert big.area() > small.area()
    assert moved.area() == small.area()


def test_decode_zero_offsets_centres_on_priors():
    pb = PriorBox(160)
    n = len(pb.priors)
    loc = np.zeros((n, 14), dtype=np.float32)
    conf = np.zeros((n, 2), dtype=np.float32)
    conf[:, 1] = np.linspace(0, 1, n)
    faces = pb.decode(loc, conf, 200, 100)
    assert len(faces) == n
    for k in (0, n // 2, n - 1):
        face = faces[k]
        cx, cy, w, h = pb.priors[k]
        assert (face.bbox.x1 + face.bbox.x2) / 2 == pytest.approx(cx * 200, rel=1e-4)
        assert (face.bbox.y1 + face.bbox.y2) / 2 == pytest.approx(cy * 100, rel=1e-4)
        assert face.bbox.x2 - face.bbox.x1 == pytest.approx(w * 200, rel=1e-4)
        assert face.landmarks.nose_tip[0] == pytest.approx(cx * 200, rel=1e-4)
        assert face.score == pytest.approx(conf[k, 1])


def test_decode_rejects_short_outputs():
    pb = PriorBox(160)
    with pytest.raises(ValueError):
        pb.decode(np.zeros((3, 14)), np.zeros((3, 2)), 100, 100)


def test_face_nms_keeps_best_of_overlap():
    a = _face(0, 0, 10, 10, 0.5)
    b = _face(0, 0, 10, 10, 0.9)
    kept = face_nms([a, b], 0.3)
    assert kept == [b]


def test_face_nms_keeps_disjoint_sorted():
    a = _face(0, 0, 10, 10, 0.5)
    b = _face(50, 50, 60, 60, 0.9)
    kept = face_nms([a, b], 0.3)
    assert [f.score for f in kept] == [0.9, 0.5]


def test_crop_box_clamps_to_image():
    face = _face(-5.0, -3.0, 50.0, 60.0, 1.0)
    assert crop_box(face, 40, 30) == (0, 0, 40, 30)


def test_crop_box_outside_raises():
    face = _face(100.0, 100.0, 120.0, 120.0, 1.0)
    with pytest.raises(ValueError):
        crop_box(face, 40, 30)


def test_reference_points_at_112_match_table():
    pts = reference_points(112)
    for got, want in zip(pts, REFERENCE_FACIAL_POINTS):
        assert got == pytest.approx(want, rel=1e-5)


def test_reference_points_scale_with_size():
    small = np.array(reference_points(112))
    large = np.array(reference_points(224))
    assert np.allclose(large, small * 2, rtol=1e-5)


def test_decode_landmarks():
    assert decode_landmarks([[0.5, 0.25, 1.0, 0.0]], 100, 40) == [(50, 10), (100, 0)]


def test_min_max_normalize_range():
    out = min_max_normalize([3.0, -1.0, 7.0, 2.0])
    assert out.min() == pytest.approx(0.0)
    assert out.max() == pytest.approx(1.0)
    assert np.argmax(out) == 2


def test_min_max_normalize_constant_raises():
    with pytest.raises(ValueError):
        min_max_normalize([2.0, 2.0])


def test_unit_normalize_has_unit_length():
    vec = np.array([3.0, -4.0, 12.0])
    out = unit_normalize(vec)
    assert np.linalg.norm(out) == pytest.approx(1.0, rel=1e-6)
    assert np.allclose(out * np.linalg.norm(vec), vec, rtol=1e-5)


def test_unit_normalize_zero_raises():
    with pytest.raises(ValueError):
        unit_normalize([0.0, 0.0])


def _outputs(detector, picks):
    n = len(detector.prior_box.priors)
    loc = np.zeros((n, 14), dtype=np.float32)
    conf = np.zeros((n, 2), dtype=np.float32)
    for idx, score in picks:
        conf[idx, 1] = score
    return loc, conf


def test_postprocess_filters_and_sorts():
    det = LibFaceDetector(320, 0.6, 0.3, 750)
    n = len(det.prior_box.priors)
    loc, conf = _outputs(det, [(0, 0.8), (n - 1, 0.9), (5, 0.3)])
    faces = det.postprocess(loc, conf, 320, 240)
    scores = [f.score for f in faces]
    assert len(faces) == 2
    assert all(s > 0.6 for s in scores)
    assert scores == sorted(scores, reverse=True)


def test_postprocess_keep_top_k():
    det = LibFaceDetector(320, 0.6, 0.3, 1)
    n = len(det.prior_box.priors)
    loc, conf = _outputs(det, [(0, 0.8), (n - 1, 0.9)])
    faces = det.postprocess(loc, conf, 320, 240)
    assert [f.score for f in faces] == [pytest.approx(0.9)]