"""Face feature database files, path helpers and nearest-feature search."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

_INT = struct.Struct("<i")
_HEADER = struct.Struct("<ii")
_MIN_DIST_START = 10000.0
_MAX_DIST_START = -10000.0


@dataclass(frozen=True)
class RecThreshold:
    """A recognition threshold together with the kind of distance it applies to."""

    thresh: float
    type: str


def list_files(path) -> list[str]:
    """All files below ``path``, recursively, as ``path/name`` strings."""
    root = str(path)
    files: list[str] = []
    with os.scandir(root) as entries:
        ordered = sorted(entries, key=lambda entry: entry.name)
    for entry in ordered:
        full = f"{root}/{entry.name}"
        if entry.is_dir(follow_symlinks=False):
            files.extend(list_files(full))
        else:
            files.append(full)
    return files


def person_name(filepath: str) -> str:
    """The name of the directory that holds the file: the second-last path component."""
    end = filepath.rfind("/")
    if end < 0:
        return filepath
    start = filepath[:end].rfind("/")
    return filepath[start + 1 : end]


def image_name(filepath: str) -> str:
    """The last path component."""
    return filepath[filepath.rfind("/") + 1 :]


def write_features(path, features, names: Sequence[str]) -> None:
    """Store a (faces, length) float matrix and one name per face in a binary file."""
    arr = np.asarray(features, dtype=np.float32)
    if arr.ndim != 2:
        raise ValueError("features must be a (faces, length) matrix")
    names = list(names)
    if len(names) != arr.shape[0]:
        raise ValueError("there must be one name per feature row")
    encoded = []
    for name in names:
        data = name.encode("utf-8")
        if b"\0" in data:
            raise ValueError("names may not contain NUL characters")
        encoded.append(data)

    with Path(path).open("wb") as fp:
        fp.write(_HEADER.pack(arr.shape[0], arr.shape[1]))
        fp.write(arr.astype("<f4").tobytes())
        for data in encoded:
            fp.write(_INT.pack(len(data)))
            fp.write(data + b"\0")


def _take(data: bytes, offset: int, size: int) -> tuple[bytes, int]:
    if size < 0 or offset + size > len(data):
        raise ValueError("feature file is truncated")
    return data[offset : offset + size], offset + size


def read_features(path) -> tuple[np.ndarray, list[str]]:
    """Load the feature matrix and names written by :func:`write_features`."""
    data = Path(path).read_bytes()
    chunk, offset = _take(data, 0, _HEADER.size)
    num_face, len_feature = _HEADER.unpack(chunk)
    if num_face < 0 or len_feature < 0:
        raise ValueError("negative sizes in feature file header")
    chunk, offset = _take(data, offset, num_face * len_feature * 4)
    features = np.frombuffer(chunk, dtype="<f4").astype(np.float32).reshape(num_face, len_feature)

    names = []
    for _ in range(num_face):
        chunk, offset = _take(data, offset, _INT.size)
        (length,) = _INT.unpack(chunk)
        chunk, offset = _take(data, offset, length + 1)
        names.append(chunk.split(b"\0", 1)[0].decode("utf-8"))
    return features, names


def _prepare(features, query) -> tuple[np.ndarray, np.ndarray]:
    feats = np.asarray(features, dtype=np.float32)
    if feats.ndim != 2:
        raise ValueError("features must be a (faces, length) matrix")
    vec = np.asarray(query, dtype=np.float32).ravel()
    if vec.size != feats.shape[1]:
        raise ValueError("query length does not match the feature length")
    return feats, vec


def min_euclid_distance(features, query) -> tuple[int, np.ndarray]:
    """Index of the closest stored feature by Euclidean distance, and all distances."""
    feats, vec = _prepare(features, query)
    diff = feats - vec
    distances = np.sqrt(np.sum(diff * diff, axis=1, dtype=np.float32))
    if distances.size and distances.min() < _MIN_DIST_START:
        return int(distances.argmin()), distances
    return 0, distances


def max_cosine_distance(features, query) -> tuple[int, np.ndarray]:
    """Index of the most similar stored feature by dot product, and all similarities.

    The vectors are expected to be unit length already.
    """
    feats, vec = _prepare(features, query)
    similarities = (feats @ vec).astype(np.float32)
    if similarities.size and similarities.max() > _MAX_DIST_START:
        return int(similarities.argmax()), similarities
    return 0, similarities