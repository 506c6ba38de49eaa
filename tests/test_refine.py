import numpy as np

from screendock.data.structs import INVALID_ENERGY, GridBox, Ligand, Pose, Receptor
from screendock.scoring.contact import ContactScorer
from screendock.scoring.evaluators import ExactEvaluator
from screendock.search.local import ANNEALING_ATTEMPTS, refine_structure


def _ligand():
    coords = np.array([[-0.7, 0.0, 0.0], [0.7, 0.0, 0.0], [0.0, 1.0, 0.0]])
    return Ligand(coords=coords, types=["C", "C", "OA"])


def _evaluator(slope=1e6):
    receptor = Receptor(coords=np.array([[9.0, 9.0, 9.0], [-9.0, 9.0, 0.0]]), types=["C", "N"])
    box = GridBox.from_center_size((0.0, 0.0, 0.0), (6.0, 6.0, 6.0))
    return ExactEvaluator(ContactScorer(receptor), box, slope)


def test_refine_restores_slope_and_marks_stuck_pose_invalid():
    evaluator = _evaluator(slope=123.0)
    ligand = _ligand()
    seen = []

    def stuck(ev, lig, params, max_steps):
        seen.append(ev.slope)
        return Pose(params=np.array(params, dtype=float), energy=-1.0)

    pose = Pose(params=np.array([20.0, 0.0, 0.0, 0.0, 0.0, 0.0]))
    refine_structure(pose, ligand, evaluator, max_steps=5, minimizer=stuck)

    assert evaluator.slope == 123.0
    assert pose.energy == INVALID_ENERGY
    assert len(seen) == ANNEALING_ATTEMPTS
    assert seen == [100.0 * 10.0 ** (2 * p) for p in range(ANNEALING_ATTEMPTS)]


def test_refine_stops_once_pose_is_inside():
    evaluator = _evaluator()
    ligand = _ligand()
    calls = []

    def inside(ev, lig, params, max_steps):
        calls.append(ev.slope)
        return Pose(params=np.zeros(6), energy=-2.0)

    pose = Pose(params=np.array([20.0, 0.0, 0.0, 0.0, 0.0, 0.0]))
    refine_structure(pose, ligand, evaluator, minimizer=inside)

    assert calls == [100.0]
    assert pose.energy == -2.0
    assert evaluator.within(pose.coords)
    assert evaluator.slope == 1e6


def test_refine_restores_slope_when_minimizer_raises():
    evaluator = _evaluator(slope=7.0)

    def broken(ev, lig, params, max_steps):
        raise RuntimeError("boom")

    pose = Pose(params=np.zeros(6))
    try:
        refine_structure(pose, _ligand(), evaluator, minimizer=broken)
    except RuntimeError:
        pass
    assert evaluator.slope == 7.0


def test_refine_with_real_minimizer_pulls_pose_into_box():
    evaluator = _evaluator()
    ligand = _ligand()
    pose = Pose(params=np.array([4.5, 0.0, 0.0, 0.0, 0.0, 0.0]))
    refine_structure(pose, ligand, evaluator, max_steps=50)
    assert np.isfinite(pose.energy)
    assert evaluator.within(pose.coords)
