"""KD-tree helpers for neighbour queries against the receptor."""

from __future__ import annotations

from typing import List

import numpy as np
from scipy.spatial import cKDTree


def build_kdtree(points: np.ndarray) -> cKDTree:
    """Build a KD-tree over an ``(N, 3)`` coordinate array."""

    return cKDTree(np.asarray(points, dtype=float).reshape(-1, 3))


def query_radius(tree: cKDTree, points: np.ndarray, r: float) -> List[np.ndarray]:
    """Query neighbors within radius r for each point."""

    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    if pts.shape[0] == 0:
        return []
    return [np.asarray(idxs, dtype=int) for idxs in tree.query_ball_point(pts, r)]
