"""Bounded, sorted and deduplicated pose collections."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Optional

import numpy as np

from screendock.data.structs import Pose, is_valid_energy
from screendock.utils.geometry import rmsd

logger = logging.getLogger(__name__)

DEFAULT_MIN_RMSD = 1.0


def _pose_coords(pose: Pose) -> np.ndarray:
    if pose.coords is None:
        raise ValueError("pose has no coordinates; refine or place it before pooling")
    return pose.coords


class ResultPool:
    """Working collection of candidate poses capped at ``capacity``."""

    def __init__(self, capacity: int, poses: Optional[Iterable[Pose]] = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = int(capacity)
        self.poses: List[Pose] = []
        for pose in poses or []:
            self.add(pose)

    def __len__(self) -> int:
        return len(self.poses)

    def __iter__(self) -> Iterator[Pose]:
        return iter(self.poses)

    def __getitem__(self, idx: int) -> Pose:
        return self.poses[idx]

    def _worst_index(self) -> int:
        return max(range(len(self.poses)), key=lambda idx: self.poses[idx].energy)

    def add(self, pose: Pose) -> bool:
        """Append ``pose``; when full, replace the worst pose if ``pose`` is better."""

        if len(self.poses) < self.capacity:
            self.poses.append(pose)
            return True
        worst = self._worst_index()
        if pose.energy < self.poses[worst].energy:
            self.poses[worst] = pose
            return True
        return False

    def add_unique(self, pose: Pose, min_rmsd: float = DEFAULT_MIN_RMSD) -> bool:
        """Insert ``pose`` unless a better pose lies within ``min_rmsd`` of it.

        A worse neighbour within ``min_rmsd`` is replaced in place; otherwise
        the pose goes through :meth:`add`.
        """

        coords = _pose_coords(pose)
        for idx, other in enumerate(self.poses):
            if rmsd(coords, _pose_coords(other)) < min_rmsd:
                if pose.energy < other.energy:
                    self.poses[idx] = pose
                    return True
                return False
        return self.add(pose)

    def sort(self) -> "ResultPool":
        """Order poses by ascending energy (stable; invalid poses last)."""

        self.poses.sort(key=lambda pose: pose.energy)
        return self

    def deduplicated(self, min_rmsd: float = DEFAULT_MIN_RMSD) -> "ResultPool":
        """Greedy clustering: keep the lowest-energy pose of every RMSD cluster."""

        accepted: List[Pose] = []
        for pose in sorted(self.poses, key=lambda item: item.energy):
            coords = _pose_coords(pose)
            if all(rmsd(coords, _pose_coords(kept)) >= min_rmsd for kept in accepted):
                accepted.append(pose)
        pool = ResultPool(self.capacity)
        pool.poses = accepted
        return pool

    def select(self, num_modes: int, energy_range: float) -> List[Pose]:
        """Poses to report, in energy order.

        Stops at the requested mode count, at the first invalid pose, or at the
        first pose more than ``energy_range`` above the best one.
        """

        selected: List[Pose] = []
        if self.poses:
            best = self.poses[0].energy
            for pose in self.poses:
                if len(selected) >= num_modes:
                    break
                if not is_valid_energy(pose.energy):
                    break
                if pose.energy > best + energy_range:
                    break
                selected.append(pose)
        if not selected:
            logger.warning(
                "Could not find any conformations completely within the search space. "
                "Check that it is large enough for all movable atoms."
            )
        return selected
