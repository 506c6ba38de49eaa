"""Geometry helpers."""

from __future__ import annotations

from typing import List

import numpy as np


def pairwise_dist(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Compute pairwise Euclidean distances."""

    diff = a[:, None, :] - b[None, :, :]
    return np.sqrt(np.sum(diff**2, axis=-1))


def rmsd(a: np.ndarray, b: np.ndarray) -> float:
    """RMSD between two coordinate sets with matching atom order."""

    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"coordinate shapes differ: {a.shape} vs {b.shape}")
    if a.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.sum((a - b) ** 2, axis=-1))))


def rmsd_lower_bound(a: np.ndarray, b: np.ndarray) -> float:
    """Nearest-atom RMSD, taken in both directions; never exceeds :func:`rmsd`."""

    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.size == 0 or b.size == 0:
        return 0.0
    dists = pairwise_dist(a, b) ** 2
    forward = float(np.mean(np.min(dists, axis=1)))
    backward = float(np.mean(np.min(dists, axis=0)))
    return float(np.sqrt(max(forward, backward)))


def apply_transform(
    coords: np.ndarray, rot_matrix: np.ndarray, translation: np.ndarray
) -> np.ndarray:
    """Apply a rigid transform to coordinates."""

    rotated = np.asarray(coords, dtype=float) @ np.asarray(rot_matrix, dtype=float).T
    return rotated + np.asarray(translation, dtype=float)


def skew(v: np.ndarray) -> np.ndarray:
    x, y, z = np.asarray(v, dtype=float)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]], dtype=float)


def rotvec_to_matrix(rotvec: np.ndarray) -> np.ndarray:
    """Rodrigues formula for a rotation vector (axis * angle in radians)."""

    rotvec = np.asarray(rotvec, dtype=float)
    angle = float(np.linalg.norm(rotvec))
    if angle < 1e-12:
        return np.eye(3, dtype=float) + skew(rotvec)
    x, y, z = rotvec / angle
    c = float(np.cos(angle))
    s = float(np.sin(angle))
    one_c = 1.0 - c
    return np.array(
        [
            [c + x * x * one_c, x * y * one_c - z * s, x * z * one_c + y * s],
            [y * x * one_c + z * s, c + y * y * one_c, y * z * one_c - x * s],
            [z * x * one_c - y * s, z * y * one_c + x * s, c + z * z * one_c],
        ],
        dtype=float,
    )


def rotvec_jacobian(rotvec: np.ndarray, rot_matrix: np.ndarray) -> List[np.ndarray]:
    """Partial derivatives dR/dv_i of the rotation matrix w.r.t. the rotation vector.

    Uses the closed form of Gallego & Yezzi (2015); at the identity the
    derivatives are the generators ``skew(e_i)``.
    """

    rotvec = np.asarray(rotvec, dtype=float)
    theta2 = float(rotvec @ rotvec)
    basis = np.eye(3, dtype=float)
    if theta2 < 1e-12:
        return [skew(basis[i]) for i in range(3)]
    residual = basis - rot_matrix
    return [
        (rotvec[i] * skew(rotvec) + skew(np.cross(rotvec, residual[:, i]))) / theta2 @ rot_matrix
        for i in range(3)
    ]


def random_rotvec(rng: np.random.Generator) -> np.ndarray:
    """Uniformly distributed random orientation as a rotation vector."""

    quat = rng.normal(size=4)
    norm = np.linalg.norm(quat)
    if norm == 0:
        return np.zeros(3, dtype=float)
    w, x, y, z = quat / norm
    if w < 0:
        w, x, y, z = -w, -x, -y, -z
    vec = np.array([x, y, z], dtype=float)
    sin_half = float(np.linalg.norm(vec))
    if sin_half < 1e-12:
        return np.zeros(3, dtype=float)
    angle = 2.0 * float(np.arctan2(sin_half, w))
    return vec / sin_half * angle


def compose_rotvec(delta: np.ndarray, rotvec: np.ndarray) -> np.ndarray:
    """Rotation vector of ``R(delta) @ R(rotvec)``."""

    matrix = rotvec_to_matrix(delta) @ rotvec_to_matrix(rotvec)
    return matrix_to_rotvec(matrix)


def matrix_to_rotvec(matrix: np.ndarray) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=float)
    cos_angle = float(np.clip((np.trace(matrix) - 1.0) / 2.0, -1.0, 1.0))
    angle = float(np.arccos(cos_angle))
    if angle < 1e-9:
        return np.zeros(3, dtype=float)
    if np.pi - angle < 1e-6:
        # near pi the antisymmetric part vanishes; use the symmetric part
        diag = np.clip((np.diag(matrix) + 1.0) / 2.0, 0.0, None)
        axis = np.sqrt(diag)
        k = int(np.argmax(axis))
        for j in range(3):
            if j != k and matrix[k, j] + matrix[j, k] < 0:
                axis[j] = -axis[j]
        return axis / np.linalg.norm(axis) * angle
    axis = np.array(
        [matrix[2, 1] - matrix[1, 2], matrix[0, 2] - matrix[2, 0], matrix[1, 0] - matrix[0, 1]],
        dtype=float,
    ) / (2.0 * np.sin(angle))
    return axis * angle
