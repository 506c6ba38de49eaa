import json
from pathlib import Path

from screendock.reporting.loaders import load_job_table, load_jsonl, summarize_jobs


def _write_metrics(path: Path) -> None:
    lines = [
        json.dumps({"name": "job", "value": 1.0, "step": 1, "sequence_number": 1, "ligand": "b.pdbqt", "status": "ok", "best_energy": -7.5}),
        "not json",
        json.dumps({"name": "job", "value": 1.0, "step": 0, "sequence_number": 0, "ligand": "a.pdbqt", "status": "ok", "best_energy": -6.0}),
        json.dumps({"name": "job", "value": 0.0, "step": 2, "sequence_number": 2, "ligand": "c.pdbqt", "status": "failed", "error_kind": "ParseError"}),
        json.dumps({"name": "jobs_submitted", "value": 3, "step": 0}),
    ]
    path.write_text("\n".join(lines), encoding="utf-8")


def test_load_jsonl_skips_bad_lines(tmp_path: Path) -> None:
    path = tmp_path / "metrics.jsonl"
    _write_metrics(path)
    assert len(load_jsonl(path)) == 4
    assert load_jsonl(tmp_path / "missing.jsonl") == []


def test_job_table_and_summary(tmp_path: Path) -> None:
    path = tmp_path / "metrics.jsonl"
    _write_metrics(path)

    frame = load_job_table(tmp_path)
    assert frame["ligand"].tolist() == ["a.pdbqt", "b.pdbqt", "c.pdbqt"]
    assert "pid" in frame.columns

    summary = summarize_jobs(frame)
    assert summary["n_jobs"] == 3
    assert summary["n_ok"] == 2
    assert summary["failures_by_kind"] == {"ParseError": 1}
    assert summary["best_energy"] == -7.5
    assert summary["best_ligand"] == "b.pdbqt"
    assert summary["median_best_energy"] == -6.75


def test_summary_of_empty_table(tmp_path: Path) -> None:
    summary = summarize_jobs(load_job_table(tmp_path / "metrics.jsonl"))
    assert summary["n_jobs"] == 0
    assert summary["best_energy"] is None
