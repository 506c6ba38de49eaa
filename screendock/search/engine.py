"""Search engine interface definitions."""

from __future__ import annotations

from typing import List, Protocol

from screendock.data.structs import Ligand, Pose
from screendock.scoring.evaluators import Evaluator


class Optimizer(Protocol):
    """Protocol for global pose samplers."""

    def search(self, evaluator: Evaluator, ligand: Ligand, seed: int) -> List[Pose]:
        """Return candidate poses (unsorted, not yet refined)."""

        ...
