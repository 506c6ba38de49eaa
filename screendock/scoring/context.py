"""Receptor context: parsed receptor plus the once-per-receptor scoring grids."""

from __future__ import annotations

import copy
import logging
from typing import Dict, Iterable, Optional

from screendock.data.io import load_receptor
from screendock.data.structs import GridBox, Ligand, Receptor
from screendock.scoring.contact import LIGAND_ATOM_TYPES, ContactScorer
from screendock.scoring.evaluators import EnergyGrid, Evaluator, ExactEvaluator, GridEvaluator

logger = logging.getLogger(__name__)

PENALTY_SLOPE = 1e6
WIDENED_MARGIN = 2.0


class ReceptorContext:
    """Receptor, scorer and grids shared read-only by every job.

    Build once with :meth:`populate` (or :meth:`from_receptor`), then hand each
    job a :meth:`clone`; the clone owns its evaluators (so slope changes stay
    private) and receives the job's ligand through :meth:`append`.
    """

    def __init__(
        self,
        receptor: Receptor,
        box: GridBox,
        weights: Optional[Dict[str, float]] = None,
        slope: float = PENALTY_SLOPE,
        widened_margin: float = WIDENED_MARGIN,
    ) -> None:
        self.receptor = receptor
        self.box = box
        self.widened_box = box.widened(widened_margin)
        self.slope = float(slope)
        self.scorer = ContactScorer(receptor, weights)
        self.tight_grid: Optional[EnergyGrid] = None
        self.widened_grid: Optional[EnergyGrid] = None
        self.ligand: Optional[Ligand] = None
        self._state = "empty"
        self.exact = ExactEvaluator(self.scorer, self.box, self.slope)
        self.exact_widened = ExactEvaluator(self.scorer, self.widened_box, self.slope)

    @classmethod
    def from_receptor(
        cls,
        receptor_path: str,
        box: GridBox,
        weights: Optional[Dict[str, float]] = None,
        slope: float = PENALTY_SLOPE,
        widened_margin: float = WIDENED_MARGIN,
        cache: bool = True,
        atom_types: Iterable[str] = LIGAND_ATOM_TYPES,
    ) -> "ReceptorContext":
        context = cls(load_receptor(receptor_path), box, weights, slope, widened_margin)
        if cache:
            context.populate(atom_types)
        return context

    @property
    def is_populated(self) -> bool:
        return self._state == "populated"

    def populate(self, atom_types: Iterable[str] = LIGAND_ATOM_TYPES) -> None:
        """Precompute tight and widened grids for ``atom_types``."""

        if self._state != "empty":
            raise RuntimeError(f"receptor context already {self._state}")
        self._state = "populating"
        types = self.scorer.relevant_types(atom_types)
        logger.info(
            "Analyzing the binding site: %d atom types, grid %s (widened %s)",
            len(types),
            "x".join(str(n + 1) for n in self.box.n),
            "x".join(str(n + 1) for n in self.widened_box.n),
        )
        try:
            self.tight_grid = EnergyGrid.build(self.scorer, self.box, types)
            self.widened_grid = EnergyGrid.build(self.scorer, self.widened_box, types)
        except BaseException:
            self._state = "empty"
            self.tight_grid = None
            self.widened_grid = None
            raise
        self._state = "populated"

    def clone(self) -> "ReceptorContext":
        """Return a job-private copy sharing the read-only receptor and grids."""

        if self._state == "populating":
            raise RuntimeError("cannot clone a receptor context while its grids are being built")
        twin = copy.copy(self)
        twin.ligand = None
        twin.exact = ExactEvaluator(self.scorer, self.box, self.slope)
        twin.exact_widened = ExactEvaluator(self.scorer, self.widened_box, self.slope)
        return twin

    def append(self, ligand: Ligand) -> None:
        if self.ligand is not None:
            raise RuntimeError("a ligand is already attached to this context")
        self.ligand = ligand

    def search_evaluator(self) -> Evaluator:
        """Evaluator for the global search phase (widened box)."""

        if self.widened_grid is not None:
            return GridEvaluator(self.widened_grid, self.slope, self.scorer)
        return self.exact_widened

    def scoring_evaluator(self) -> Evaluator:
        """Evaluator restricted to the requested box (grid when cached)."""

        if self.tight_grid is not None:
            return GridEvaluator(self.tight_grid, self.slope, self.scorer)
        return self.exact

    def refinement_evaluator(self) -> Evaluator:
        """Exact evaluator used by annealed refinement and final scoring."""

        return self.exact
