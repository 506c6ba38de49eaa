"""Batch screening driver: pick a scheduler, record diagnostics."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from screendock.data.jobs import JobSource
from screendock.pipeline.farm import run_farm
from screendock.pipeline.logging import RunLogger
from screendock.pipeline.run import Config, build_context, dock_job, validate_config
from screendock.pipeline.scheduler import FanOutScheduler, JobRunner, Spawner

logger = logging.getLogger(__name__)


def run_batch(
    cfg: Config,
    receptor_path: str,
    spawner: Optional[Spawner] = None,
    threads: bool = False,
    job_runner: JobRunner = dock_job,
) -> Dict[str, Any]:
    """Dock every ligand of ``cfg.job_file`` into ``cfg.batch_out_dir``.

    Returns the run summary; with ``cfg.metrics`` it is also written to
    ``summary.json`` next to ``metrics.jsonl``.
    """

    validate_config(cfg, batch=True)
    out_dir = str(cfg.batch_out_dir)
    os.makedirs(out_dir, exist_ok=True)
    run_logger = RunLogger(out_dir=out_dir, live_write=cfg.metrics)
    run_logger.reset()

    jobs = JobSource(str(cfg.job_file))
    if cfg.strategy == "farm":
        logger.info("farm batch: %d workers", cfg.workers)
        report = run_farm(cfg, receptor_path, str(cfg.job_file), threads=threads, job_runner=job_runner, run_logger=run_logger)
        run_logger.reload()
        run_logger.log_metric("assignments", report.assignments, step=0)
        run_logger.log_metric("sentinels", report.sentinels, step=0)
        run_logger.log_metric(
            "worker_processed",
            sum(report.processed_by_worker.values()),
            step=0,
            extra={"by_worker": {str(key): value for key, value in report.processed_by_worker.items()}},
        )
    else:
        template = build_context(cfg, receptor_path)
        logger.info("fan-out batch: up to %d concurrent ligands", cfg.fanout)
        scheduler = FanOutScheduler(template, cfg, spawner=spawner, job_runner=job_runner, run_logger=run_logger)
        batch = scheduler.run(jobs)
        run_logger.reload()
        run_logger.log_metric("jobs_submitted", batch.submitted, step=0)
        run_logger.log_metric("jobs_completed", batch.completed, step=0)
        run_logger.log_metric("jobs_failed", batch.failed, step=0)
        run_logger.log_metric("peak_outstanding", batch.peak_outstanding, step=0)

    if cfg.metrics:
        run_logger.flush_summary(os.path.join(out_dir, "summary.json"))
    return run_logger.summary()
