"""Post-processing of DBNet text-segmentation maps into text polygons."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

ANGLE_THRESHOLD = 60.0


@dataclass(frozen=True)
class RotatedRect:
    """A rectangle of the given size whose width runs at ``angle`` degrees."""

    center: tuple[float, float]
    width: float
    height: float
    angle: float

    def points(self) -> list[tuple[float, float]]:
        """The four corners in the order bottom-left, top-left, top-right, bottom-right."""
        cx, cy = self.center
        theta = math.radians(self.angle)
        b = math.cos(theta) * 0.5
        a = math.sin(theta) * 0.5
        p0 = (cx - a * self.height - b * self.width, cy + b * self.height - a * self.width)
        p1 = (cx + a * self.height - b * self.width, cy - b * self.height - a * self.width)
        p2 = (2 * cx - p0[0], 2 * cy - p0[1])
        p3 = (2 * cx - p1[0], 2 * cy - p1[1])
        return [p0, p1, p2, p3]


def _polygon_mask(shape: tuple[int, int], polygon: np.ndarray) -> np.ndarray:
    """Pixels inside the polygon or on its outline."""
    height, width = shape
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    inside = np.zeros(shape, dtype=bool)
    on_edge = np.zeros(shape, dtype=bool)
    poly = np.asarray(polygon, dtype=np.float64)
    for (x1, y1), (x2, y2) in zip(poly, np.roll(poly, -1, axis=0)):
        if y1 != y2:
            crosses = (y1 > ys) != (y2 > ys)
            x_cross = x1 + (ys - y1) * (x2 - x1) / (y2 - y1)
            inside ^= crosses & (xs < x_cross)
        cross = (x2 - x1) * (ys - y1) - (y2 - y1) * (xs - x1)
        within = (
            (xs >= min(x1, x2))
            & (xs <= max(x1, x2))
            & (ys >= min(y1, y2))
            & (ys <= max(y1, y2))
        )
        on_edge |= (cross == 0) & within
    return inside | on_edge


def contour_score(binary, contour: Iterable[Sequence[int]]) -> float:
    """Mean of the probability map over the area enclosed by an integer contour."""
    binary = np.asarray(binary, dtype=np.float64)
    if binary.ndim != 2:
        raise ValueError("expected a two-dimensional probability map")
    pts = np.asarray(list(contour), dtype=np.int64).reshape(-1, 2)
    if pts.size == 0:
        raise ValueError("empty contour")
    rows, cols = binary.shape
    xmin = max(int(pts[:, 0].min()), 0)
    xmax = min(int(pts[:, 0].max()) + 1, cols - 1)
    ymin = max(int(pts[:, 1].min()), 0)
    ymax = min(int(pts[:, 1].max()) + 1, rows - 1)
    if xmax < xmin or ymax < ymin:
        raise ValueError("contour lies outside the probability map")
    roi = binary[ymin : ymax + 1, xmin : xmax + 1]
    mask = _polygon_mask(roi.shape, pts - np.array([xmin, ymin]))
    if not mask.any():
        return 0.0
    return float(roi[mask].mean())


def _convex_hull(points: np.ndarray) -> np.ndarray:
    pts = np.unique(points, axis=0)
    if len(pts) <= 2:
        return pts

    def cross(o, a, b) -> float:
        return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])

    def half(sequence) -> list:
        chain: list = []
        for p in sequence:
            while len(chain) >= 2 and cross(chain[-2], chain[-1], p) <= 0:
                chain.pop()
            chain.append(p)
        return chain

    lower = half(pts)
    upper = half(pts[::-1])
    return np.array(lower[:-1] + upper[:-1])


def min_area_rect(points: Iterable[Sequence[float]]) -> RotatedRect:
    """The smallest rotated rectangle enclosing the points, angle in [0, 90)."""
    pts = np.asarray(list(points), dtype=np.float64).reshape(-1, 2)
    if pts.size == 0:
        raise ValueError("no points given")
    hull = _convex_hull(pts)
    if len(hull) == 1:
        return RotatedRect((float(hull[0, 0]), float(hull[0, 1])), 0.0, 0.0, 0.0)

    best = None
    for start, end in zip(hull, np.roll(hull, -1, axis=0)):
        dx, dy = end - start
        if dx == 0 and dy == 0:
            continue
        theta = math.degrees(math.atan2(dy, dx)) % 90.0
        if theta >= 90.0 - 1e-9 or theta < 1e-9:
            theta = 0.0
        rad = math.radians(theta)
        u = np.array([math.cos(rad), math.sin(rad)])
        v = np.array([-math.sin(rad), math.cos(rad)])
        pu = hull @ u
        pv = hull @ v
        width = float(pu.max() - pu.min())
        height = float(pv.max() - pv.min())
        area = width * height
        if best is None or area < best[0] - 1e-12:
            center = (pu.max() + pu.min()) / 2 * u + (pv.max() + pv.min()) / 2 * v
            best = (area, RotatedRect((float(center[0]), float(center[1])), width, height, theta))
    return best[1]


def normalize_box(rect: RotatedRect) -> RotatedRect:
    """Make the box wide rather than tall, turning the angle by 90 degrees when swapping."""
    if not (rect.width < rect.height or abs(rect.angle) >= ANGLE_THRESHOLD):
        return rect
    angle = rect.angle
    if angle < 0:
        angle += 90
    elif angle > 0:
        angle -= 90
    return RotatedRect(rect.center, rect.height, rect.width, angle)


def unclip(polygon: Iterable[Sequence[float]], unclip_ratio: float) -> list[tuple[float, float]]:
    """Push every edge of a polygon outwards by area * ratio / perimeter."""
    poly = np.asarray(list(polygon), dtype=np.float64).reshape(-1, 2)
    if len(poly) < 3:
        raise ValueError("a polygon needs at least three points")
    closed = np.roll(poly, -1, axis=0)
    area = abs(float(np.sum(poly[:, 0] * closed[:, 1] - closed[:, 0] * poly[:, 1]))) / 2
    length = float(np.sum(np.hypot(*(closed - poly).T)))
    if length == 0:
        raise ValueError("degenerate polygon")
    distance = area * unclip_ratio / length

    lines = []
    for current, previous in zip(poly, np.roll(poly, 1, axis=0)):
        pt1 = np.rint(current)
        pt2 = np.rint(previous)
        vec = pt1 - pt2
        norm = math.hypot(vec[0], vec[1])
        if norm == 0:
            raise ValueError("polygon has a zero-length edge")
        scale = distance / norm
        rotate = np.array([vec[1] * scale, -vec[0] * scale])
        lines.append((pt1 + rotate, pt2 + rotate))

    result = []
    for (a, b), (c, d) in zip(lines, lines[1:] + lines[:1]):
        v1 = b - a
        v2 = d - c
        cos_angle = float(v1 @ v2) / (math.hypot(*v1) * math.hypot(*v2))
        if abs(cos_angle) > 0.7:
            pt = (b + c) * 0.5
        else:
            denom = (
                a[0] * (d[1] - c[1])
                + b[0] * (c[1] - d[1])
                + d[0] * (b[1] - a[1])
                + c[0] * (a[1] - b[1])
            )
            num = a[0] * (d[1] - c[1]) + c[0] * (a[1] - d[1]) + d[0] * (c[1] - a[1])
            pt = a + (num / denom) * (b - a)
        result.append((float(pt[0]), float(pt[1])))
    return result


class DBPostprocessor:
    """Turns a DBNet probability map and its contours into text polygons.

    ``binary_threshold`` is the level at which the contours are meant to be
    traced on the probability map.
    """

    def __init__(
        self,
        binary_threshold: float = 0.3,
        polygon_threshold: float = 0.5,
        unclip_ratio: float = 2.0,
        max_candidates: int = 200,
    ):
        self.binary_threshold = binary_threshold
        self.polygon_threshold = polygon_threshold
        self.unclip_ratio = unclip_ratio
        self.max_candidates = max_candidates

    def process(self, binary, contours, image_height: int, image_width: int) -> list[list[tuple[float, float]]]:
        """Score, rescale, box and expand each contour; returns one polygon per kept contour."""
        binary = np.asarray(binary, dtype=np.float32)
        if binary.ndim < 2:
            raise ValueError("expected a two-dimensional probability map")
        binary = binary.reshape(binary.shape[-2:])
        scale_h = np.float32(image_height) / np.float32(binary.shape[0])
        scale_w = np.float32(image_width) / np.float32(binary.shape[1])

        candidates = list(contours)
        if self.max_candidates > 0:
            candidates = candidates[: self.max_candidates]

        results = []
        for contour in candidates:
            if contour_score(binary, contour) < self.polygon_threshold:
                continue
            pts = np.asarray(contour, dtype=np.float32).reshape(-1, 2)
            scaled = np.stack(
                [(pts[:, 0] * scale_w).astype(np.int64), (pts[:, 1] * scale_h).astype(np.int64)],
                axis=1,
            )
            box = normalize_box(min_area_rect(scaled))
            results.append(unclip(box.points(), self.unclip_ratio))
        return results