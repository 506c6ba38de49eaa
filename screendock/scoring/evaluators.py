"""Energy evaluators sharing one interface: exact scorer and precomputed grids."""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol, Sequence, Tuple

import numpy as np

from screendock.data.structs import HYDROGEN_TYPES, GridBox
from screendock.scoring.contact import ContactScorer


class Evaluator(Protocol):
    """Interaction energy with an out-of-box penalty."""

    box: GridBox
    slope: float

    def evaluate(self, types: Sequence[str], coords: np.ndarray) -> Tuple[float, np.ndarray]:
        """Return energy and per-atom gradient."""

        ...

    def within(self, coords: np.ndarray) -> bool:
        """Return True when every atom lies inside the box."""

        ...


def _clamp_to_box(box: GridBox, coords: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Clamp coordinates into the box.

    Returns the clamped coordinates and the sign of the penalty derivative per
    coordinate (zero inside the box).
    """

    clamped = np.clip(coords, box.begin, box.end)
    return clamped, np.sign(coords - clamped)


def _heavy(types: Sequence[str]) -> np.ndarray:
    return np.array([t not in HYDROGEN_TYPES for t in types], dtype=bool)


class ExactEvaluator:
    """Uncached evaluator calling the scorer directly."""

    def __init__(self, scorer: ContactScorer, box: GridBox, slope: float) -> None:
        self.scorer = scorer
        self.box = box
        self.slope = float(slope)

    def evaluate(self, types: Sequence[str], coords: np.ndarray) -> Tuple[float, np.ndarray]:
        coords = np.asarray(coords, dtype=float).reshape(-1, 3)
        clamped, signs = _clamp_to_box(self.box, coords)
        energy, grad = self.scorer.evaluate(types, clamped)
        # clamped axes do not move with the atom
        grad = np.where(signs != 0.0, 0.0, grad)
        heavy = _heavy(types)
        penalty = self.slope * float(np.sum(np.abs(coords - clamped)[heavy]))
        grad[heavy] += self.slope * signs[heavy]
        return energy + penalty, grad

    def within(self, coords: np.ndarray) -> bool:
        return self.box.contains(coords)


class EnergyGrid:
    """Probe-energy maps sampled on the lattice of a box, one map per atom type."""

    def __init__(self, box: GridBox, maps: Dict[str, np.ndarray]) -> None:
        self.box = box
        self.maps = maps

    @classmethod
    def build(cls, scorer: ContactScorer, box: GridBox, atom_types: Iterable[str]) -> "EnergyGrid":
        xs, ys, zs = box.points_per_axis()
        mesh = np.stack(np.meshgrid(xs, ys, zs, indexing="ij"), axis=-1)
        shape = mesh.shape[:3]
        points = mesh.reshape(-1, 3)
        maps: Dict[str, np.ndarray] = {}
        for atom_type, values in scorer.probe_energies(list(atom_types), points).items():
            values = values.reshape(shape)
            values.flags.writeable = False
            maps[atom_type] = values
        return cls(box, maps)

    @property
    def atom_types(self) -> list[str]:
        return sorted(self.maps)

    def interpolate(self, atom_type: str, coords: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Trilinear interpolation of one map; coordinates must be inside the box."""

        try:
            values = self.maps[atom_type]
        except KeyError:
            raise ValueError(f"no grid map for atom type {atom_type!r}") from None
        box = self.box
        n = np.asarray(box.n, dtype=int)
        frac = (coords - box.begin) / box.granularity
        base = np.clip(np.floor(frac).astype(int), 0, n - 1)
        t = np.clip(frac - base, 0.0, 1.0)
        i, j, k = base[:, 0], base[:, 1], base[:, 2]
        tx, ty, tz = t[:, 0], t[:, 1], t[:, 2]

        c000 = values[i, j, k]
        c100 = values[i + 1, j, k]
        c010 = values[i, j + 1, k]
        c110 = values[i + 1, j + 1, k]
        c001 = values[i, j, k + 1]
        c101 = values[i + 1, j, k + 1]
        c011 = values[i, j + 1, k + 1]
        c111 = values[i + 1, j + 1, k + 1]

        c00 = c000 * (1 - tx) + c100 * tx
        c10 = c010 * (1 - tx) + c110 * tx
        c01 = c001 * (1 - tx) + c101 * tx
        c11 = c011 * (1 - tx) + c111 * tx
        c0 = c00 * (1 - ty) + c10 * ty
        c1 = c01 * (1 - ty) + c11 * ty
        energy = c0 * (1 - tz) + c1 * tz

        d_tx = (
            ((c100 - c000) * (1 - ty) + (c110 - c010) * ty) * (1 - tz)
            + ((c101 - c001) * (1 - ty) + (c111 - c011) * ty) * tz
        )
        d_ty = (c10 - c00) * (1 - tz) + (c11 - c01) * tz
        d_tz = c1 - c0
        grad = np.stack([d_tx, d_ty, d_tz], axis=-1) / box.granularity
        return energy, grad


class GridEvaluator:
    """Evaluator backed by an :class:`EnergyGrid`.

    Atom types without a map are scored by ``scorer`` when one is given;
    otherwise they raise ``ValueError``.
    """

    def __init__(self, grid: EnergyGrid, slope: float, scorer: Optional[ContactScorer] = None) -> None:
        self.grid = grid
        self.box = grid.box
        self.slope = float(slope)
        self.scorer = scorer

    def _atom_terms(self, atom_type: str, coords: np.ndarray) -> Tuple[float, np.ndarray]:
        if atom_type in self.grid.maps or self.scorer is None:
            energy, grad = self.grid.interpolate(atom_type, coords)
            return float(np.sum(energy)), grad
        return self.scorer.evaluate([atom_type] * coords.shape[0], coords)

    def evaluate(self, types: Sequence[str], coords: np.ndarray) -> Tuple[float, np.ndarray]:
        coords = np.asarray(coords, dtype=float).reshape(-1, 3)
        clamped, signs = _clamp_to_box(self.box, coords)
        grad = np.zeros_like(coords)
        total = 0.0
        types_arr = np.asarray(types)
        for atom_type in set(types):
            if atom_type in HYDROGEN_TYPES:
                continue
            idxs = np.nonzero(types_arr == atom_type)[0]
            energy, atom_grad = self._atom_terms(atom_type, clamped[idxs])
            total += energy
            atom_grad = np.where(signs[idxs] != 0.0, 0.0, atom_grad)
            grad[idxs] = atom_grad + self.slope * signs[idxs]
            total += self.slope * float(np.sum(np.abs(coords[idxs] - clamped[idxs])))
        return total, grad

    def within(self, coords: np.ndarray) -> bool:
        return self.box.contains(coords)
