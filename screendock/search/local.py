"""Bounded-step local minimization and annealed box-containment refinement."""

from __future__ import annotations

from typing import Callable

import numpy as np
from scipy.optimize import minimize

from screendock.data.structs import INVALID_ENERGY, Ligand, Pose
from screendock.scoring.evaluators import Evaluator
from screendock.utils.geometry import apply_transform, rotvec_jacobian, rotvec_to_matrix

ANNEALING_ATTEMPTS = 5

Minimizer = Callable[[Evaluator, Ligand, np.ndarray, int], Pose]


def rigid_body_energy(evaluator: Evaluator, ligand: Ligand, params: np.ndarray) -> tuple[float, np.ndarray]:
    """Energy and gradient with respect to (position, rotation vector)."""

    params = np.asarray(params, dtype=float)
    rot = rotvec_to_matrix(params[3:6])
    coords = apply_transform(ligand.coords, rot, params[:3])
    energy, atom_grad = evaluator.evaluate(ligand.types, coords)
    grad = np.empty(6, dtype=float)
    grad[:3] = atom_grad.sum(axis=0)
    for axis, d_rot in enumerate(rotvec_jacobian(params[3:6], rot)):
        grad[3 + axis] = float(np.sum(atom_grad * (ligand.coords @ d_rot.T)))
    return float(energy), grad


def minimize_pose(evaluator: Evaluator, ligand: Ligand, params: np.ndarray, max_steps: int) -> Pose:
    """Run at most ``max_steps`` L-BFGS-B iterations from ``params``."""

    x0 = np.asarray(params, dtype=float)
    result = minimize(
        lambda x: rigid_body_energy(evaluator, ligand, x),
        x0,
        jac=True,
        method="L-BFGS-B",
        options={"maxiter": max(1, int(max_steps))},
    )
    x = np.asarray(result.x, dtype=float)
    energy, _ = rigid_body_energy(evaluator, ligand, x)
    if not np.isfinite(energy):
        x = x0
        energy, _ = rigid_body_energy(evaluator, ligand, x0)
    return Pose(params=x, energy=energy, coords=ligand.heavy_coords(x))


def refine_structure(
    pose: Pose,
    ligand: Ligand,
    evaluator: Evaluator,
    max_steps: int = 1000,
    minimizer: Minimizer = minimize_pose,
) -> Pose:
    """Minimize ``pose`` in place with an escalating out-of-box penalty slope.

    The slope goes 1e2, 1e4, ... 1e10 until every heavy atom is inside the
    box; the evaluator's slope is restored afterwards. A pose that never fits
    gets ``INVALID_ENERGY``.
    """

    slope_orig = evaluator.slope
    try:
        for attempt in range(ANNEALING_ATTEMPTS):
            evaluator.slope = 100.0 * 10.0 ** (2 * attempt)
            result = minimizer(evaluator, ligand, pose.params, max_steps)
            pose.params = np.asarray(result.params, dtype=float)
            pose.energy = float(result.energy)
            if evaluator.within(ligand.heavy_coords(pose.params)):
                break
        pose.coords = ligand.heavy_coords(pose.params)
        if not evaluator.within(pose.coords):
            pose.energy = INVALID_ENERGY
    finally:
        evaluator.slope = slope_orig
    return pose
