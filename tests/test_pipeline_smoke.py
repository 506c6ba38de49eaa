import numpy as np
import pytest

from screendock.data.io import load_config
from screendock.data.structs import LigandJob
from screendock.errors import UsageError
from screendock.pipeline.run import Config, build_context, dock_job, run_single, validate_config


def _atom_line(serial, name, x, y, z, atom_type):
    return f"ATOM  {serial:5d} {name:<4} LIG A   1    {x:8.3f}{y:8.3f}{z:8.3f}  1.00  0.00    +0.000 {atom_type}"


def _write_receptor(path):
    lines = []
    golden = np.pi * (3.0 - np.sqrt(5.0))
    for idx in range(30):
        z = 1.0 - 2.0 * (idx + 0.5) / 30
        r = np.sqrt(1.0 - z * z)
        x, y = r * np.cos(golden * idx), r * np.sin(golden * idx)
        atom_type = ("C", "N", "OA")[idx % 3]
        lines.append(_atom_line(idx + 1, atom_type, 8.0 * x, 8.0 * y, 8.0 * z, atom_type))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


def _write_ligand(path):
    lines = [
        "ROOT",
        _atom_line(1, "C1", 0.0, 0.0, 0.0, "C"),
        _atom_line(2, "C2", 1.5, 0.0, 0.0, "C"),
        _atom_line(3, "O1", 2.2, 1.2, 0.0, "OA"),
        _atom_line(4, "H1", 2.9, 1.3, 0.4, "HD"),
        "ENDROOT",
        "TORSDOF 1",
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


def _cfg(**overrides):
    data = load_config("configs/default.yaml")
    data.update(overrides)
    return Config(**data)


def test_search_writes_ranked_models(tmp_path):
    receptor = _write_receptor(tmp_path / "rec.pdbqt")
    ligand = _write_ligand(tmp_path / "lig.pdbqt")

    outcome = run_single(_cfg(), receptor, ligand)

    assert outcome.ok
    assert outcome.output_path == str(tmp_path / "lig_out.pdbqt")
    assert outcome.n_poses >= 1
    lines = (tmp_path / "lig_out.pdbqt").read_text(encoding="utf-8").splitlines()
    remarks = [line for line in lines if line.startswith("REMARK VINA RESULT:")]
    assert len(remarks) == outcome.n_poses
    energies = [float(line.split()[3]) for line in remarks]
    assert energies == sorted(energies)
    assert energies[-1] - energies[0] <= 3.0 + 0.1
    assert remarks[0].split()[4:] == ["0.000", "0.000"]


def test_search_is_reproducible(tmp_path):
    receptor = _write_receptor(tmp_path / "rec.pdbqt")
    ligand = _write_ligand(tmp_path / "lig.pdbqt")
    first = run_single(_cfg(), receptor, ligand, str(tmp_path / "a.pdbqt"))
    second = run_single(_cfg(), receptor, ligand, str(tmp_path / "b.pdbqt"))
    assert first.best_energy == second.best_energy
    assert (tmp_path / "a.pdbqt").read_text() == (tmp_path / "b.pdbqt").read_text()


def test_score_only_writes_nothing(tmp_path, caplog):
    receptor = _write_receptor(tmp_path / "rec.pdbqt")
    ligand = _write_ligand(tmp_path / "lig.pdbqt")

    with caplog.at_level("INFO"):
        outcome = run_single(_cfg(mode="score_only"), receptor, ligand)

    assert outcome.output_path is None
    assert outcome.n_poses == 1
    assert not (tmp_path / "lig_out.pdbqt").exists()
    assert "Affinity" in caplog.text


def test_local_only_and_randomize_only(tmp_path):
    receptor = _write_receptor(tmp_path / "rec.pdbqt")
    ligand = _write_ligand(tmp_path / "lig.pdbqt")

    local = run_single(_cfg(mode="local_only"), receptor, ligand, str(tmp_path / "local.pdbqt"))
    text = (tmp_path / "local.pdbqt").read_text(encoding="utf-8")
    assert local.n_poses == 1
    assert text.startswith("MODEL 1")

    run_single(_cfg(mode="randomize_only"), receptor, ligand, str(tmp_path / "random.pdbqt"))
    random_text = (tmp_path / "random.pdbqt").read_text(encoding="utf-8")
    assert "MODEL" not in random_text
    assert random_text.count("ATOM") == 4


def test_dock_job_contains_missing_ligand(tmp_path):
    receptor = _write_receptor(tmp_path / "rec.pdbqt")
    cfg = _cfg(mode="score_only", batch_out_dir=str(tmp_path / "out"))
    template = build_context(cfg, receptor)

    outcome = dock_job(template, LigandJob(0, str(tmp_path / "missing.pdbqt")), 5, cfg)

    assert not outcome.ok
    assert outcome.error_kind == "FileAccessError"
    assert template.ligand is None


def test_validate_config_rejects_bad_values():
    with pytest.raises(UsageError):
        validate_config(Config(exhaustiveness=0))
    with pytest.raises(UsageError):
        validate_config(Config(num_modes=0))
    with pytest.raises(UsageError):
        validate_config(Config(size_x=0.0))
    with pytest.raises(UsageError):
        validate_config(Config(), batch=True)


def test_validate_config_warns_on_large_box(caplog):
    with caplog.at_level("WARNING"):
        validate_config(Config(size_x=40.0, size_y=40.0, size_z=40.0))
    assert "27000" in caplog.text


def test_search_docks_halogen_ligand(tmp_path):
    receptor = _write_receptor(tmp_path / "rec.pdbqt")
    ligand = tmp_path / "chloro.pdbqt"
    ligand.write_text(
        "\n".join(
            [
                "ROOT",
                _atom_line(1, "C1", 0.0, 0.0, 0.0, "C"),
                _atom_line(2, "CL1", 1.8, 0.0, 0.0, "CL"),
                "ENDROOT",
                "TORSDOF 0",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    cfg = _cfg(batch_out_dir=str(tmp_path / "out"))
    template = build_context(cfg, receptor)

    outcome = dock_job(template, LigandJob(0, str(ligand)), 11, cfg)

    assert "CL" in template.widened_grid.atom_types
    assert outcome.ok, outcome.message
    assert outcome.n_poses >= 1
