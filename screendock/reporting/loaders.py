"""Tolerant loaders for batch metrics."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

JOB_COLUMNS = [
    "sequence_number",
    "ligand",
    "status",
    "error_kind",
    "message",
    "output_path",
    "best_energy",
    "n_poses",
    "seed",
    "pid",
]


def load_jsonl(path: str | Path) -> list[dict[str, Any]]:
    """Load a JSONL file, skipping unparsable lines."""

    records: list[dict[str, Any]] = []
    jsonl_path = Path(path)
    if not jsonl_path.exists():
        return records
    with open(jsonl_path, "r", encoding="utf-8") as handle:
        for line in handle:
            if not line.strip():
                continue
            try:
                parsed = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                records.append(parsed)
    return records


def load_job_table(path: str | Path) -> pd.DataFrame:
    """Job outcome records from ``metrics.jsonl`` as a DataFrame.

    Only ``name == "job"`` records are kept; missing columns are filled with
    ``None`` and rows are ordered by sequence number.
    """

    jsonl_path = Path(path)
    if jsonl_path.is_dir():
        jsonl_path = jsonl_path / "metrics.jsonl"
    rows = [record for record in load_jsonl(jsonl_path) if record.get("name") == "job"]
    frame = pd.DataFrame(rows)
    for column in JOB_COLUMNS:
        if column not in frame.columns:
            frame[column] = None
    frame = frame[JOB_COLUMNS]
    if not frame.empty:
        frame = frame.sort_values("sequence_number", kind="stable").reset_index(drop=True)
    return frame


def summarize_jobs(frame: pd.DataFrame) -> dict[str, Any]:
    """Counts, failure kinds and energy statistics for a job table."""

    if frame.empty:
        return {
            "n_jobs": 0,
            "n_ok": 0,
            "n_failed": 0,
            "failures_by_kind": {},
            "best_energy": None,
            "median_best_energy": None,
            "best_ligand": None,
        }
    ok = frame[frame["status"] == "ok"]
    failed = frame[frame["status"] != "ok"]
    kinds = failed["error_kind"].fillna("unknown").astype(str).value_counts()
    energies = pd.to_numeric(ok["best_energy"], errors="coerce").dropna()
    best_ligand = None
    best_energy = None
    if not energies.empty:
        best_energy = float(energies.min())
        best_ligand = str(ok.loc[energies.idxmin(), "ligand"])
    return {
        "n_jobs": int(len(frame)),
        "n_ok": int(len(ok)),
        "n_failed": int(len(failed)),
        "failures_by_kind": {str(kind): int(count) for kind, count in kinds.items()},
        "best_energy": best_energy,
        "median_best_energy": float(energies.median()) if not energies.empty else None,
        "best_ligand": best_ligand,
    }
