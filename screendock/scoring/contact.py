"""Heuristic contact scorer (not a physical energy model).

Pairwise receptor-ligand terms on the surface distance ``s = d - R_i - R_j``:
two attractive gaussians and a quadratic repulsion, weighted and summed over
heavy-atom pairs within a cutoff.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from screendock.data.structs import HYDROGEN_TYPES, Receptor
from screendock.utils.geometry import pairwise_dist
from screendock.utils.kdtree import build_kdtree, query_radius

DEFAULT_WEIGHTS: Dict[str, float] = {
    "w_gauss1": -0.035579,
    "w_gauss2": -0.005156,
    "w_repulsion": 0.840245,
    "w_rot": 0.05846,
}

_RADII: Dict[str, float] = {
    "C": 1.9,
    "A": 1.9,
    "N": 1.8,
    "NA": 1.8,
    "NS": 1.8,
    "O": 1.7,
    "OA": 1.7,
    "OS": 1.7,
    "S": 2.0,
    "SA": 2.0,
    "P": 2.1,
    "F": 1.5,
    "Cl": 1.8,
    "CL": 1.8,
    "Br": 2.0,
    "BR": 2.0,
    "I": 2.2,
    "Mg": 1.2,
    "Ca": 1.2,
    "Mn": 1.2,
    "Fe": 1.2,
    "Zn": 1.2,
}
_DEFAULT_RADIUS = 1.9

# every atom type with a tabulated radius gets a grid map unless told otherwise
LIGAND_ATOM_TYPES: Tuple[str, ...] = tuple(_RADII)


def atom_radius(atom_type: str) -> float:
    return _RADII.get(atom_type, _DEFAULT_RADIUS)


def _weight(weights: Dict[str, float], key: str) -> float:
    if key in weights:
        return float(weights[key])
    return DEFAULT_WEIGHTS[key]


class ContactScorer:
    """Scores ligand atoms against a fixed receptor."""

    cutoff = 8.0
    chunk_size = 1024

    def __init__(self, receptor: Receptor, weights: Optional[Dict[str, float]] = None) -> None:
        self.weights = dict(weights or {})
        self.w_gauss1 = _weight(self.weights, "w_gauss1")
        self.w_gauss2 = _weight(self.weights, "w_gauss2")
        self.w_repulsion = _weight(self.weights, "w_repulsion")
        self.w_rot = _weight(self.weights, "w_rot")
        heavy = np.array([t not in HYDROGEN_TYPES for t in receptor.types], dtype=bool)
        self.receptor_coords = np.asarray(receptor.coords, dtype=float)[heavy]
        self.receptor_radii = np.array(
            [atom_radius(t) for t, keep in zip(receptor.types, heavy) if keep], dtype=float
        )
        self._tree = build_kdtree(self.receptor_coords)

    def _terms(self, surface: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        gauss1 = np.exp(-((surface / 0.5) ** 2))
        gauss2 = np.exp(-(((surface - 3.0) / 2.0) ** 2))
        repulsion = np.where(surface < 0.0, surface**2, 0.0)
        return gauss1, gauss2, repulsion

    def _pair_energy(self, surface: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Weighted pair energy and its derivative with respect to distance."""

        gauss1, gauss2, repulsion = self._terms(surface)
        energy = self.w_gauss1 * gauss1 + self.w_gauss2 * gauss2 + self.w_repulsion * repulsion
        d_energy = (
            self.w_gauss1 * (-8.0 * surface * gauss1)
            + self.w_gauss2 * (-(surface - 3.0) / 2.0 * gauss2)
            + self.w_repulsion * np.where(surface < 0.0, 2.0 * surface, 0.0)
        )
        return energy, d_energy

    def probe_energies(self, atom_types: Sequence[str], points: np.ndarray) -> Dict[str, np.ndarray]:
        """Energy of a single probe atom of each type placed at each point.

        Distances are computed once per chunk of points and shared by all
        probe types.
        """

        points = np.asarray(points, dtype=float).reshape(-1, 3)
        out = {atom_type: np.zeros(points.shape[0], dtype=float) for atom_type in atom_types}
        scored = [t for t in atom_types if t not in HYDROGEN_TYPES]
        if not scored or self.receptor_coords.shape[0] == 0:
            return out
        for start in range(0, points.shape[0], self.chunk_size):
            chunk = points[start : start + self.chunk_size]
            dists = pairwise_dist(chunk, self.receptor_coords)
            in_range = dists <= self.cutoff
            for atom_type in scored:
                surface = dists - atom_radius(atom_type) - self.receptor_radii[None, :]
                energy, _ = self._pair_energy(surface)
                out[atom_type][start : start + chunk.shape[0]] = np.sum(energy * in_range, axis=1)
        return out

    def evaluate(self, types: Sequence[str], coords: np.ndarray) -> Tuple[float, np.ndarray]:
        """Exact intermolecular energy and per-atom gradient."""

        coords = np.asarray(coords, dtype=float).reshape(-1, 3)
        grad = np.zeros_like(coords)
        total = 0.0
        neighbors = query_radius(self._tree, coords, self.cutoff)
        for idx, rec_idxs in enumerate(neighbors):
            if rec_idxs.size == 0 or types[idx] in HYDROGEN_TYPES:
                continue
            deltas = coords[idx] - self.receptor_coords[rec_idxs]
            dists = np.linalg.norm(deltas, axis=1)
            dists = np.maximum(dists, 1e-6)
            surface = dists - atom_radius(types[idx]) - self.receptor_radii[rec_idxs]
            energy, d_energy = self._pair_energy(surface)
            total += float(np.sum(energy))
            grad[idx] = np.sum((d_energy / dists)[:, None] * deltas, axis=0)
        return total, grad

    def term_values(self, types: Sequence[str], coords: np.ndarray) -> Dict[str, float]:
        """Unweighted term sums, for score-only reporting."""

        coords = np.asarray(coords, dtype=float).reshape(-1, 3)
        sums = {"gauss1": 0.0, "gauss2": 0.0, "repulsion": 0.0}
        neighbors = query_radius(self._tree, coords, self.cutoff)
        for idx, rec_idxs in enumerate(neighbors):
            if rec_idxs.size == 0 or types[idx] in HYDROGEN_TYPES:
                continue
            dists = np.linalg.norm(self.receptor_coords[rec_idxs] - coords[idx], axis=1)
            surface = dists - atom_radius(types[idx]) - self.receptor_radii[rec_idxs]
            gauss1, gauss2, repulsion = self._terms(surface)
            sums["gauss1"] += float(np.sum(gauss1))
            sums["gauss2"] += float(np.sum(gauss2))
            sums["repulsion"] += float(np.sum(repulsion))
        return sums

    def clash_penalty(self, types: Sequence[str], coords: np.ndarray) -> float:
        """Unweighted repulsion between ligand and receptor heavy atoms."""

        return self.term_values(types, coords)["repulsion"]

    def adjust(self, energy: float, torsdof: int) -> float:
        """Conformation-independent correction for ligand flexibility."""

        return float(energy) / (1.0 + self.w_rot * float(torsdof))

    def relevant_types(self, ligand_types: Iterable[str] = LIGAND_ATOM_TYPES) -> List[str]:
        return sorted({t for t in ligand_types if t not in HYDROGEN_TYPES})
