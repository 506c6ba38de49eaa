"""Core data structures for screendock."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from screendock.utils.geometry import apply_transform, rotvec_to_matrix

INVALID_ENERGY = float("inf")
GRID_GRANULARITY = 0.375
HYDROGEN_TYPES = frozenset({"H", "HD", "HS"})


def is_valid_energy(energy: float) -> bool:
    """Return False for the invalid-pose sentinel (and NaN)."""

    return not (math.isinf(energy) or math.isnan(energy))


@dataclass(frozen=True)
class LigandJob:
    """One line of the job list."""

    sequence_number: int
    path: str
    file_offset: Optional[int] = None

    @property
    def basename(self) -> str:
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class GridBox:
    """Axis-aligned search box snapped to the grid granularity."""

    begin: np.ndarray
    end: np.ndarray
    n: tuple[int, int, int]
    granularity: float = GRID_GRANULARITY

    @classmethod
    def from_center_size(
        cls,
        center: Any,
        size: Any,
        granularity: float = GRID_GRANULARITY,
    ) -> "GridBox":
        center = np.asarray(center, dtype=float)
        size = np.asarray(size, dtype=float)
        n = tuple(int(math.ceil(float(span) / granularity)) for span in size)
        real_span = granularity * np.asarray(n, dtype=float)
        begin = center - real_span / 2.0
        return cls(begin=begin, end=begin + real_span, n=n, granularity=granularity)

    @property
    def center(self) -> np.ndarray:
        return (self.begin + self.end) / 2.0

    @property
    def span(self) -> np.ndarray:
        return self.end - self.begin

    def widened(self, margin: float) -> "GridBox":
        """Return the box expanded by ``margin`` on both sides of every axis."""

        return GridBox.from_center_size(
            self.center, self.span + 2.0 * float(margin), granularity=self.granularity
        )

    def points_per_axis(self) -> List[np.ndarray]:
        return [
            self.begin[axis] + self.granularity * np.arange(self.n[axis] + 1, dtype=float)
            for axis in range(3)
        ]

    def contains(self, coords: np.ndarray, tolerance: float = 1e-4) -> bool:
        coords = np.asarray(coords, dtype=float).reshape(-1, 3)
        if coords.size == 0:
            return True
        lower_ok = np.all(coords >= self.begin - tolerance)
        upper_ok = np.all(coords <= self.end + tolerance)
        return bool(lower_ok and upper_ok)


@dataclass
class Receptor:
    """Rigid receptor atoms."""

    coords: np.ndarray
    types: List[str]
    name: str = "receptor"


@dataclass
class Ligand:
    """Rigid ligand model.

    ``coords`` are stored relative to the ligand's heavy-atom centroid so that
    a pose's translation parameters are the centroid position.
    """

    coords: np.ndarray
    types: List[str]
    template_lines: List[str] = field(default_factory=list)
    torsdof: int = 0
    name: str = "ligand"
    origin: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=float))

    @property
    def heavy_mask(self) -> np.ndarray:
        return np.array([atom_type not in HYDROGEN_TYPES for atom_type in self.types], dtype=bool)

    @property
    def num_heavy_atoms(self) -> int:
        return int(np.sum(self.heavy_mask))

    @property
    def degrees_of_freedom(self) -> int:
        return 6 + int(self.torsdof)

    def initial_params(self) -> np.ndarray:
        """Parameters that reproduce the input coordinates."""

        return np.concatenate([self.origin, np.zeros(3, dtype=float)])

    def place(self, params: np.ndarray) -> np.ndarray:
        """All-atom coordinates for ``params`` = (position, rotation vector)."""

        params = np.asarray(params, dtype=float)
        return apply_transform(self.coords, rotvec_to_matrix(params[3:6]), params[:3])

    def heavy_coords(self, params: np.ndarray) -> np.ndarray:
        return self.place(params)[self.heavy_mask]


@dataclass
class Pose:
    """One conformation: rigid-body parameters, energy and derived coordinates."""

    params: np.ndarray
    energy: float = INVALID_ENERGY
    coords: Optional[np.ndarray] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return is_valid_energy(self.energy)

    def copy(self) -> "Pose":
        return Pose(
            params=np.array(self.params, dtype=float),
            energy=self.energy,
            coords=None if self.coords is None else np.array(self.coords, dtype=float),
            meta=dict(self.meta),
        )


@dataclass
class JobOutcome:
    """Result of one pipeline invocation, successful or not."""

    job: LigandJob
    status: str = "ok"
    error_kind: Optional[str] = None
    message: str = ""
    output_path: Optional[str] = None
    best_energy: Optional[float] = None
    n_poses: int = 0
    seed: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def as_record(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.job.sequence_number,
            "ligand": self.job.path,
            "status": self.status,
            "error_kind": self.error_kind,
            "message": self.message,
            "output_path": self.output_path,
            "best_energy": self.best_energy,
            "n_poses": self.n_poses,
            "seed": self.seed,
        }
