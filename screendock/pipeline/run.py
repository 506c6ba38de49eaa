"""Pipeline entrypoints: configuration, per-job docking and single-ligand runs."""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Literal, Optional

import numpy as np
from pydantic import BaseModel, Field

from screendock.data.io import default_output, load_ligand, vina_remark, write_poses, write_structure
from screendock.data.jobs import batch_output_path
from screendock.data.structs import GridBox, JobOutcome, Ligand, LigandJob, Pose
from screendock.errors import DockingError, OptimizationDivergence, UsageError
from screendock.pipeline.logging import RunLogger
from screendock.pipeline.pool import ResultPool
from screendock.scoring.context import PENALTY_SLOPE, WIDENED_MARGIN, ReceptorContext
from screendock.scoring.contact import DEFAULT_WEIGHTS
from screendock.search.engine import Optimizer
from screendock.search.local import refine_structure, rigid_body_energy
from screendock.search.monte_carlo import MonteCarloSearch, default_local_steps
from screendock.utils.geometry import random_rotvec, rmsd, rmsd_lower_bound

logger = logging.getLogger(__name__)

SEED_MIN = 1
SEED_MAX = 100_000_000
MAX_BOX_VOLUME = 27e3

Mode = Literal["search", "local_only", "score_only", "randomize_only"]


class Config(BaseModel):
    """Configuration model for screendock."""

    seed: Optional[int] = None
    mode: Mode = "search"
    center_x: float = 0.0
    center_y: float = 0.0
    center_z: float = 0.0
    size_x: float = 20.0
    size_y: float = 20.0
    size_z: float = 20.0
    granularity: float = 0.375
    widened_margin: float = WIDENED_MARGIN
    slope: float = PENALTY_SLOPE
    exhaustiveness: int = 8
    num_modes: int = 9
    energy_range: float = 3.0
    min_rmsd: float = 1.0
    num_saved_mins: int = 20
    pool_capacity: Optional[int] = None
    mc_steps: Optional[int] = None
    local_steps: Optional[int] = None
    temperature: float = 1.2
    randomize_attempts: int = 10000
    weights: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    strategy: Literal["fanout", "farm"] = "fanout"
    fanout: int = 1
    workers: int = 2
    start_method: Optional[str] = None
    job_file: Optional[str] = None
    batch_out_dir: Optional[str] = None
    metrics: bool = True

    class Config:
        extra = "allow"

    def grid_box(self) -> GridBox:
        return GridBox.from_center_size(
            (self.center_x, self.center_y, self.center_z),
            (self.size_x, self.size_y, self.size_z),
            granularity=self.granularity,
        )

    def working_capacity(self) -> int:
        if self.pool_capacity:
            return int(self.pool_capacity)
        return max(2 * self.num_modes, self.num_saved_mins * self.exhaustiveness)

    @property
    def cache_needed(self) -> bool:
        return self.mode == "search"


def validate_config(cfg: Config, batch: bool = False) -> None:
    """Reject unusable settings before any job runs."""

    if cfg.exhaustiveness < 1:
        raise UsageError("exhaustiveness must be 1 or greater")
    if cfg.num_modes < 1:
        raise UsageError("num_modes must be 1 or greater")
    if cfg.mode != "score_only" and min(cfg.size_x, cfg.size_y, cfg.size_z) <= 0:
        raise UsageError("Search space dimensions should be positive")
    if cfg.granularity <= 0:
        raise UsageError("granularity must be positive")
    if cfg.pool_capacity is not None and cfg.pool_capacity < cfg.num_modes:
        raise UsageError("pool_capacity must not be smaller than num_modes")
    if batch:
        if not cfg.job_file or not cfg.batch_out_dir:
            raise UsageError("Batch mode needs a job file and an output directory")
        if cfg.fanout < 1:
            raise UsageError("fanout must be 1 or greater")
        if cfg.strategy == "farm" and cfg.workers < 1:
            raise UsageError("the farm needs at least one worker")
    if cfg.mode != "score_only" and cfg.size_x * cfg.size_y * cfg.size_z > MAX_BOX_VOLUME:
        logger.warning("The search space volume > 27000 Angstrom^3")


def draw_seed(rng: np.random.Generator) -> int:
    """Per-job seed, uniform on [1, 100_000_000]."""

    return int(rng.integers(SEED_MIN, SEED_MAX, endpoint=True))


def build_context(cfg: Config, receptor_path: str) -> ReceptorContext:
    """Parse the receptor and, for search runs, populate the grids."""

    return ReceptorContext.from_receptor(
        receptor_path,
        cfg.grid_box(),
        weights=cfg.weights,
        slope=cfg.slope,
        widened_margin=cfg.widened_margin,
        cache=cfg.cache_needed,
    )


class DockingPipeline:
    """One ligand against a private clone of the receptor context."""

    def __init__(self, cfg: Config, optimizer: Optional[Optimizer] = None) -> None:
        self.cfg = cfg
        self.optimizer = optimizer or MonteCarloSearch(cfg)

    def _local_steps(self, ligand: Ligand) -> int:
        return int(self.cfg.local_steps or default_local_steps(ligand))

    def run(self, context: ReceptorContext, out_path: str, seed: int) -> ResultPool:
        """Dispatch on the configured mode; returns the curated pool."""

        if context.ligand is None:
            raise ValueError("append a ligand to the context before running the pipeline")
        mode = self.cfg.mode
        if mode == "score_only":
            return self.score_only(context)
        if mode == "local_only":
            return self.local_only(context, out_path)
        if mode == "randomize_only":
            return self.randomize_only(context, out_path, seed)
        return self.search(context, out_path, seed)

    def _final_energy(self, context: ReceptorContext, pose: Pose) -> float:
        ligand = context.ligand
        energy, _ = context.exact.evaluate(ligand.types, ligand.place(pose.params))
        return context.scorer.adjust(energy, ligand.torsdof)

    def score_only(self, context: ReceptorContext) -> ResultPool:
        ligand = context.ligand
        params = ligand.initial_params()
        coords = ligand.place(params)
        energy, _ = context.scorer.evaluate(ligand.types, coords)
        energy = context.scorer.adjust(energy, ligand.torsdof)
        logger.info("Affinity: %.5f (kcal/mol)", energy)
        terms = context.scorer.term_values(ligand.types, coords)
        logger.info(
            "Intermolecular contributions to the terms, before weighting: %s",
            ", ".join(f"{name} {value:.5f}" for name, value in terms.items()),
        )
        pool = ResultPool(1)
        pool.add(Pose(params=params, energy=energy, coords=ligand.heavy_coords(params), meta=terms))
        return pool

    def local_only(self, context: ReceptorContext, out_path: str) -> ResultPool:
        ligand = context.ligand
        evaluator = context.refinement_evaluator()
        pose = Pose(params=ligand.initial_params())
        logger.info("Performing local search")
        refine_structure(pose, ligand, evaluator, self._local_steps(ligand))
        within = evaluator.within(pose.coords)
        energy = self._final_energy(context, pose)
        logger.info("Affinity: %.5f (kcal/mol)", energy)
        if not within:
            logger.warning("not all movable atoms are within the search space")
        pose.energy = energy
        write_poses(out_path, ligand, [pose], [vina_remark(energy, 0.0, 0.0)])
        pool = ResultPool(1)
        pool.add(pose)
        return pool

    def randomize_only(self, context: ReceptorContext, out_path: str, seed: int) -> ResultPool:
        ligand = context.ligand
        rng = np.random.default_rng(int(seed))
        logger.info("Using random seed: %d", seed)
        box = context.box
        best_params = ligand.initial_params()
        best_penalty = float("inf")
        for attempt in range(max(1, int(self.cfg.randomize_attempts))):
            params = np.concatenate([rng.uniform(box.begin, box.end), random_rotvec(rng)])
            penalty = context.scorer.clash_penalty(ligand.types, ligand.place(params))
            if attempt == 0 or penalty < best_penalty:
                best_params = params
                best_penalty = penalty
        logger.info("Clash penalty: %.5f", best_penalty)
        write_structure(out_path, ligand, best_params)
        pool = ResultPool(1)
        pool.add(Pose(params=best_params, energy=best_penalty, coords=ligand.heavy_coords(best_params)))
        return pool

    def search(self, context: ReceptorContext, out_path: str, seed: int) -> ResultPool:
        cfg = self.cfg
        ligand = context.ligand
        logger.info("Using random seed: %d", seed)
        candidates = self.optimizer.search(context.search_evaluator(), ligand, seed)

        # candidates are ranked against the requested box before the pool caps them
        scoring = context.scoring_evaluator()
        working = ResultPool(cfg.working_capacity())
        for pose in candidates:
            pose.energy, _ = rigid_body_energy(scoring, ligand, pose.params)
            working.add(pose)

        evaluator = context.refinement_evaluator()
        for pose in working:
            refine_structure(pose, ligand, evaluator, self._local_steps(ligand))

        working.sort()
        for pose in working:
            if pose.is_valid:
                pose.energy = self._final_energy(context, pose)
        working.sort()

        curated = working.deduplicated(cfg.min_rmsd)
        selected = curated.select(cfg.num_modes, cfg.energy_range)
        remarks = self._log_modes(selected)
        write_poses(out_path, ligand, selected, remarks)
        return ResultPool(max(1, len(selected)), selected)

    def _log_modes(self, selected: List[Pose]) -> List[str]:
        logger.info("mode |   affinity | dist from best mode")
        logger.info("     | (kcal/mol) | rmsd l.b.| rmsd u.b.")
        logger.info("-----+------------+----------+----------")
        remarks: List[str] = []
        if not selected:
            return remarks
        best = selected[0].coords
        for idx, pose in enumerate(selected):
            lb = rmsd_lower_bound(pose.coords, best)
            ub = rmsd(pose.coords, best)
            logger.info("%4d    %9.1f  %9.3f  %9.3f", idx + 1, pose.energy, lb, ub)
            remarks.append(vina_remark(pose.energy, lb, ub))
        return remarks


def dock_job(
    template: ReceptorContext,
    job: LigandJob,
    seed: int,
    cfg: Config,
    run_logger: Optional[RunLogger] = None,
) -> JobOutcome:
    """Dock one ligand; every per-job failure comes back as a failed outcome."""

    out_path = batch_output_path(cfg.batch_out_dir or ".", job)
    outcome = JobOutcome(job=job, seed=seed)
    logger.info("Doing ligand number %d (%s)", job.sequence_number, job.basename)
    try:
        context = template.clone()
        context.append(load_ligand(job.path))
        logger.info("output : %s", out_path)
        pool = DockingPipeline(cfg).run(context, out_path, seed)
    except DockingError as exc:
        outcome.status = "failed"
        outcome.error_kind = type(exc).__name__
        outcome.message = str(exc)
        logger.error("ligand %d (%s) skipped: %s", job.sequence_number, job.path, exc)
    except Exception as exc:  # noqa: BLE001
        outcome.status = "failed"
        outcome.error_kind = type(exc).__name__
        outcome.message = str(exc)
        logger.exception("Exception caught on ligand %d, moving on to next ligand", job.sequence_number)
    else:
        energies = [pose.energy for pose in pool if pose.is_valid]
        outcome.n_poses = len(energies)
        outcome.best_energy = min(energies) if energies else None
        if cfg.mode != "score_only":
            outcome.output_path = out_path
        if cfg.mode == "search" and not energies:
            outcome.error_kind = OptimizationDivergence.__name__
    if run_logger is not None:
        run_logger.log_job(outcome)
    return outcome


def run_single(
    cfg: Config,
    receptor_path: str,
    ligand_path: str,
    out_path: Optional[str] = None,
) -> JobOutcome:
    """Dock one ligand outside batch mode (errors propagate to the caller)."""

    validate_config(cfg)
    seed = cfg.seed if cfg.seed is not None else draw_seed(np.random.default_rng())
    out_path = out_path or default_output(ligand_path)
    context = build_context(cfg, receptor_path)
    context.append(load_ligand(ligand_path))
    job = LigandJob(sequence_number=0, path=ligand_path)
    pool = DockingPipeline(cfg).run(context, out_path, seed)
    energies = [pose.energy for pose in pool if pose.is_valid]
    return JobOutcome(
        job=job,
        output_path=None if cfg.mode == "score_only" else os.fspath(out_path),
        best_energy=min(energies) if energies else None,
        n_poses=len(energies),
        seed=seed,
    )


__all__ = [
    "Config",
    "DockingPipeline",
    "build_context",
    "dock_job",
    "draw_seed",
    "run_single",
    "validate_config",
]
