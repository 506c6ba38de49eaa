"""Monte Carlo global search with local minimization after every move.

Each of ``exhaustiveness`` chains gets its own generator spawned from the job
seed, so results depend only on the seed and not on chain scheduling.
"""

from __future__ import annotations

import logging
from typing import Any, List

import numpy as np

from screendock.data.structs import Ligand, Pose
from screendock.pipeline.pool import ResultPool
from screendock.scoring.evaluators import Evaluator
from screendock.search.engine import Optimizer
from screendock.search.local import Minimizer, minimize_pose
from screendock.utils.geometry import compose_rotvec, random_rotvec

logger = logging.getLogger(__name__)

MUTATION_AMPLITUDE = 2.0


def default_mc_steps(ligand: Ligand) -> int:
    heuristic = ligand.num_heavy_atoms + 10 * ligand.degrees_of_freedom
    return int(70 * 3 * (50 + heuristic) / 2)


def default_local_steps(ligand: Ligand) -> int:
    return int((25 + ligand.num_heavy_atoms) / 3)


def _random_in_sphere(rng: np.random.Generator) -> np.ndarray:
    while True:
        point = rng.uniform(-1.0, 1.0, size=3)
        if float(point @ point) < 1.0:
            return point


def _gyration_radius(ligand: Ligand) -> float:
    heavy = ligand.coords[ligand.heavy_mask]
    if heavy.size == 0:
        return 1.0
    radius = float(np.sqrt(np.mean(np.sum(heavy**2, axis=1))))
    return radius if radius > 1e-6 else 1.0


def metropolis_accept(old_energy: float, new_energy: float, temperature: float, rng: np.random.Generator) -> bool:
    if new_energy < old_energy:
        return True
    return bool(rng.random() < np.exp((old_energy - new_energy) / temperature))


class MonteCarloSearch(Optimizer):
    """Independent Metropolis chains; minima are kept in per-chain pools."""

    def __init__(self, cfg: Any, minimizer: Minimizer = minimize_pose) -> None:
        self.cfg = cfg
        self.minimizer = minimizer

    def _random_params(self, evaluator: Evaluator, rng: np.random.Generator) -> np.ndarray:
        position = rng.uniform(evaluator.box.begin, evaluator.box.end)
        return np.concatenate([position, random_rotvec(rng)])

    def _mutate(self, params: np.ndarray, rng: np.random.Generator, gyration: float) -> np.ndarray:
        mutated = np.array(params, dtype=float)
        if rng.random() < 0.5:
            mutated[:3] += MUTATION_AMPLITUDE * _random_in_sphere(rng)
        else:
            delta = MUTATION_AMPLITUDE / gyration * _random_in_sphere(rng)
            mutated[3:6] = compose_rotvec(delta, mutated[3:6])
        return mutated

    def _run_chain(
        self,
        evaluator: Evaluator,
        ligand: Ligand,
        rng: np.random.Generator,
        chain_index: int,
    ) -> List[Pose]:
        cfg = self.cfg
        num_steps = int(getattr(cfg, "mc_steps", None) or default_mc_steps(ligand))
        local_steps = int(getattr(cfg, "local_steps", None) or default_local_steps(ligand))
        temperature = float(getattr(cfg, "temperature", 1.2) or 1.2)
        min_rmsd = float(getattr(cfg, "min_rmsd", 1.0) or 1.0)
        pool = ResultPool(int(getattr(cfg, "num_saved_mins", 20) or 20))
        gyration = _gyration_radius(ligand)

        current = self.minimizer(evaluator, ligand, self._random_params(evaluator, rng), local_steps)
        best_energy = float("inf")
        n_accepted = 0
        for step in range(num_steps):
            candidate = self.minimizer(evaluator, ligand, self._mutate(current.params, rng, gyration), local_steps)
            if step == 0 or metropolis_accept(current.energy, candidate.energy, temperature, rng):
                current = candidate
                n_accepted += 1
                if current.energy < best_energy or len(pool) < pool.capacity:
                    pool.add_unique(current.copy(), min_rmsd)
                    best_energy = min(best_energy, current.energy)

        logger.debug(
            "chain %d: %d steps, %d accepted, best %.3f, %d minima kept",
            chain_index,
            num_steps,
            n_accepted,
            best_energy,
            len(pool),
        )
        return pool.poses

    def search(self, evaluator: Evaluator, ligand: Ligand, seed: int) -> List[Pose]:
        exhaustiveness = max(1, int(getattr(self.cfg, "exhaustiveness", 1) or 1))
        child_seqs = np.random.SeedSequence(int(seed)).spawn(exhaustiveness)
        poses: List[Pose] = []
        for chain_index, child in enumerate(child_seqs):
            rng = np.random.default_rng(child)
            poses.extend(self._run_chain(evaluator, ligand, rng, chain_index))
        return poses
