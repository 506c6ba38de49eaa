"""Command-line interface for screendock."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, Sequence

from pydantic import ValidationError

from screendock.data.io import load_config
from screendock.errors import DockingError, UsageError
from screendock.pipeline.batch import run_batch
from screendock.pipeline.run import Config, run_single
from screendock.reporting import load_job_table, plot_energy_histogram, summarize_jobs

logger = logging.getLogger("screendock")


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""

    parser = argparse.ArgumentParser(prog="screendock")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    dock_parser = subparsers.add_parser("dock", help="Dock a single ligand")
    dock_parser.add_argument("--config", required=True, help="Path to YAML config")
    dock_parser.add_argument("--receptor", required=True, help="Path to receptor PDBQT file")
    dock_parser.add_argument("--ligand", required=True, help="Path to ligand PDBQT file")
    dock_parser.add_argument("--out", default=None, help="Output PDBQT (default: <ligand>_out.pdbqt)")
    dock_parser.add_argument(
        "--mode",
        choices=["search", "local_only", "score_only", "randomize_only"],
        default=None,
        help="Override the configured mode",
    )
    dock_parser.add_argument("--seed", type=int, default=None, help="Override the configured seed")

    batch_parser = subparsers.add_parser("batch", help="Dock every ligand listed in a job file")
    batch_parser.add_argument("--config", required=True, help="Path to YAML config")
    batch_parser.add_argument("--receptor", required=True, help="Path to receptor PDBQT file")
    batch_parser.add_argument("--jobfile", default=None, help="One ligand path per line")
    batch_parser.add_argument("--batch-out", dest="batch_out", default=None, help="Output directory")
    batch_parser.add_argument("--strategy", choices=["fanout", "farm"], default=None)
    batch_parser.add_argument("--fanout", type=int, default=None, help="Concurrent ligands (fan-out)")
    batch_parser.add_argument("--workers", type=int, default=None, help="Farm workers")
    batch_parser.add_argument("--seed", type=int, default=None, help="Seed for per-ligand seeds")

    report_parser = subparsers.add_parser("report", help="Summarize a batch output directory")
    report_parser.add_argument("--batch-out", dest="batch_out", required=True, help="Batch output directory")
    report_parser.add_argument("--plot", default=None, help="Write an energy histogram PNG")

    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _load_cfg(path: str, overrides: Dict[str, Any]) -> Config:
    raw_cfg = load_config(path)
    raw_cfg.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return Config(**raw_cfg)
    except ValidationError as exc:
        raise UsageError(f"invalid configuration in {path}: {exc}") from exc


def _report(batch_out: str, plot: str | None) -> Dict[str, Any]:
    frame = load_job_table(os.path.join(batch_out, "metrics.jsonl"))
    summary = summarize_jobs(frame)
    if plot:
        summary["plot"] = plot if plot_energy_histogram(frame, plot) else None
    os.makedirs(batch_out, exist_ok=True)
    path = os.path.join(batch_out, "report.json")
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(json.dumps(summary, indent=2))
    return summary


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    try:
        if args.command == "dock":
            cfg = _load_cfg(args.config, {"mode": args.mode, "seed": args.seed})
            outcome = run_single(cfg, args.receptor, args.ligand, args.out)
            if outcome.output_path:
                logger.info("wrote %s", outcome.output_path)
            return 0

        if args.command == "batch":
            cfg = _load_cfg(
                args.config,
                {
                    "job_file": args.jobfile,
                    "batch_out_dir": args.batch_out,
                    "strategy": args.strategy,
                    "fanout": args.fanout,
                    "workers": args.workers,
                    "seed": args.seed,
                },
            )
            summary = run_batch(cfg, args.receptor)
            logger.info("%d ligands docked, %d failed", summary["n_ok"], summary["n_failed"])
            return 0

        if args.command == "report":
            summary = _report(args.batch_out, args.plot)
            print(json.dumps(summary, indent=2))
            return 0
    except DockingError as exc:
        print(f"screendock: error: {exc}", file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
