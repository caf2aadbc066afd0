import math

import numpy as np
import pytest

from detpost.multiyolo import CITYSCAPES_COLORMAP, MultiYoloPostprocessor, combine, normalize


def _post(**kwargs):
    params = dict(input_height=64, input_width=64, num_class=2, obj_threshold=0.3, nms_threshold=0.5)
    params.update(kwargs)
    return MultiYoloPostprocessor(**params)


def _preds(post, num_class=2):
    return np.zeros((post.num_proposals, 5 + num_class), dtype=np.float32)


def _single_box_preds(post):
    preds = _preds(post)
    preds[0] = [0.5, 0.5, 0.5, 0.5, 0.9, 0.2, 0.7]
    return preds


def test_normalize_swaps_to_rgb_and_scales():
    img = np.zeros((2, 3, 3), dtype=np.uint8)
    img[0, 0] = [10, 20, 255]
    out = normalize(img)
    assert out.shape == (3, 2, 3)
    assert out[0, 0, 0] == pytest.approx(1.0)
    assert out[2, 0, 0] == pytest.approx(10 / 255)
    assert out[1, 0, 0] == pytest.approx(20 / 255)


def test_normalize_rejects_grey_image():
    with pytest.raises(ValueError):
        normalize(np.zeros((4, 4), dtype=np.uint8))


def test_combine_wide_frame_stacks_vertically():
    frame = np.zeros((2, 4, 3), dtype=np.uint8)
    seg = np.ones((2, 4, 3), dtype=np.uint8)
    out = combine(frame, seg)
    assert out.shape == (4, 4, 3)
    assert (out[:2] == 0).all() and (out[2:] == 1).all()


def test_combine_tall_frame_stacks_side_by_side():
    frame = np.zeros((4, 2, 3), dtype=np.uint8)
    seg = np.ones((4, 2, 3), dtype=np.uint8)
    out = combine(frame, seg)
    assert out.shape == (4, 4, 3)
    assert (out[:, :2] == 0).all() and (out[:, 2:] == 1).all()


def test_decode_single_box_uses_anchor_size():
    post = _post()
    boxes = post.decode_boxes(_single_box_preds(post), 64, 64, 64, 64, 0, 0)
    assert len(boxes) == 1
    box = boxes[0]
    assert box.label == 1
    assert box.score == pytest.approx(0.7)
    assert box.x2 - box.x1 == pytest.approx(10.0)
    assert box.y2 - box.y1 == pytest.approx(13.0)
    assert (box.x1 + box.x2) / 2 == pytest.approx(4.0)


def test_decode_scales_with_frame_size():
    post = _post()
    preds = _single_box_preds(post)
    small = post.decode_boxes(preds, 64, 64, 64, 64, 0, 0)[0]
    large = post.decode_boxes(preds, 128, 128, 64, 64, 0, 0)[0]
    assert large.x1 == pytest.approx(2 * small.x1)
    assert large.y2 == pytest.approx(2 * small.y2)


def test_decode_padding_shifts_box():
    post = _post()
    preds = _single_box_preds(post)
    plain = post.decode_boxes(preds, 64, 64, 64, 64, 0, 0)[0]
    padded = post.decode_boxes(preds, 64, 64, 64, 64, 0, 4)[0]
    assert padded.x1 == pytest.approx(plain.x1 - 4)
    assert padded.y1 == pytest.approx(plain.y1)


def test_decode_objectness_must_exceed_threshold():
    post = _post()
    preds = _single_box_preds(post)
    preds[0, 4] = 0.3
    assert post.decode_boxes(preds, 64, 64, 64, 64, 0, 0) == []


def test_decode_suppresses_duplicate_box():
    post = _post()
    preds = _single_box_preds(post)
    second = 64  # same cell, second anchor of the first stride
    preds[second] = [
        0.5,
        0.5,
        0.5 * math.sqrt(10 / 16),
        0.5 * math.sqrt(13 / 30),
        0.9,
        0.9,
        0.1,
    ]
    boxes = post.decode_boxes(preds, 64, 64, 64, 64, 0, 0)
    assert len(boxes) == 1
    assert boxes[0].score == pytest.approx(0.9)
    assert boxes[0].label == 0


def test_decode_rejects_short_predictions():
    post = _post()
    with pytest.raises(ValueError):
        post.decode_boxes(np.zeros((10, 7), dtype=np.float32), 64, 64, 64, 64, 0, 0)


def test_decode_rejects_narrow_rows():
    post = _post()
    with pytest.raises(ValueError):
        post.decode_boxes(np.zeros((post.num_proposals, 5), dtype=np.float32), 64, 64, 64, 64, 0, 0)


def test_constructor_rejects_no_classes():
    with pytest.raises(ValueError):
        _post(num_class=0)


def test_segment_colours_halves():
    post = _post()
    seg = np.zeros((19, 64, 64), dtype=np.float32)
    seg[1, :, :32] = 1
    seg[3, :, 32:] = 1
    out = post.segment(seg, 32, 32, 64, 64, 0, 0)
    assert out.shape == (32, 32, 3)
    assert (out[:, :16] == CITYSCAPES_COLORMAP[1]).all()
    assert (out[:, 16:] == CITYSCAPES_COLORMAP[3]).all()


def test_segment_low_values_fall_back_to_first_class():
    post = _post()
    seg = np.full((19, 64, 64), -5.0, dtype=np.float32)
    out = post.segment(seg, 8, 8, 64, 64, 0, 0)
    assert (out == CITYSCAPES_COLORMAP[0]).all()


def test_segment_skips_padding_rows():
    post = _post()
    seg = np.zeros((19, 64, 64), dtype=np.float32)
    seg[5, :16] = 1
    seg[4, 16:] = 1
    out = post.segment(seg, 20, 40, 32, 64, 16, 0)
    assert out.shape == (20, 40, 3)
    assert (out == CITYSCAPES_COLORMAP[4]).all()


def test_segment_rejects_too_many_classes():
    post = _post()
    with pytest.raises(ValueError):
        post.segment(np.zeros((20, 64, 64), dtype=np.float32), 8, 8, 64, 64, 0, 0)


def test_segment_rejects_out_of_range_padding():
    post = _post()
    with pytest.raises(ValueError):
        post.segment(np.zeros((19, 64, 64), dtype=np.float32), 64, 64, 64, 64, 40, 0)