"""Run diagnostics for screendock batches."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from screendock.data.structs import JobOutcome


@dataclass
class RunLogger:
    """In-memory metric buffer with optional incremental JSONL writes.

    With ``live_write`` every record is appended to ``<out_dir>/metrics.jsonl``
    as soon as it is logged. Each line is written with a single ``write`` call
    on a file opened in append mode, so records coming from several job
    processes interleave line by line.
    """

    records: List[Dict[str, Any]] = field(default_factory=list)
    out_dir: str | None = None
    live_write: bool = False

    @property
    def path(self) -> str | None:
        if not self.out_dir:
            return None
        return os.path.join(self.out_dir, "metrics.jsonl")

    def log_metric(self, name: str, value: float, step: int, extra: Optional[Dict[str, Any]] = None) -> None:
        """Record a scalar metric; ``step`` is the job sequence number or 0 for run-level values."""

        payload: Dict[str, Any] = {"name": name, "value": value, "step": step}
        if extra:
            payload.update(extra)
        self.records.append(payload)
        self._append_record(payload)

    def log_job(self, outcome: JobOutcome) -> None:
        """Record one job outcome."""

        extra = outcome.as_record()
        extra["pid"] = os.getpid()
        value = 1.0 if outcome.ok else 0.0
        self.log_metric("job", value, step=outcome.job.sequence_number, extra=extra)

    def _append_record(self, payload: Dict[str, Any]) -> None:
        path = self.path
        if not self.live_write or path is None:
            return
        os.makedirs(self.out_dir or ".", exist_ok=True)
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")

    def reset(self) -> None:
        """Drop buffered records and any ``metrics.jsonl`` left by a previous run."""

        self.records = []
        path = self.path
        if path is not None and os.path.exists(path):
            os.remove(path)

    def reload(self) -> None:
        """Replace the buffer with what job processes appended to ``metrics.jsonl``."""

        path = self.path
        if path is None or not os.path.exists(path):
            return
        records: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        self.records = records

    def summary(self) -> Dict[str, Any]:
        """Aggregate job records and the latest value of every other metric."""

        jobs = [record for record in self.records if record.get("name") == "job"]
        energies = [
            float(record["best_energy"]) for record in jobs if record.get("best_energy") is not None
        ]
        failures: Dict[str, int] = {}
        for record in jobs:
            if record.get("status") != "ok":
                kind = str(record.get("error_kind") or "unknown")
                failures[kind] = failures.get(kind, 0) + 1
        payload: Dict[str, Any] = {
            "n_jobs": len(jobs),
            "n_ok": sum(1 for record in jobs if record.get("status") == "ok"),
            "n_failed": sum(1 for record in jobs if record.get("status") != "ok"),
            "failures_by_kind": failures,
            "best_energy": min(energies) if energies else None,
        }
        for record in self.records:
            name = record.get("name")
            if name and name != "job":
                payload[name] = record.get("value")
        return payload

    def flush_summary(self, path: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(self.summary(), indent=2))
