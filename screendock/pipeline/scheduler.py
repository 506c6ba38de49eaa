"""Bounded fan-out pool: one child process per ligand, at most N outstanding."""

from __future__ import annotations

import logging
import multiprocessing
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Iterable, Optional, Protocol, Tuple

import numpy as np

from screendock.data.structs import JobOutcome, LigandJob
from screendock.errors import ProcessSpawnError
from screendock.pipeline.logging import RunLogger
from screendock.pipeline.run import Config, dock_job, draw_seed
from screendock.scoring.context import ReceptorContext

logger = logging.getLogger(__name__)

JobRunner = Callable[[ReceptorContext, LigandJob, int, Config, Optional[RunLogger]], JobOutcome]

EXIT_OK = 0
EXIT_FAILED = 1


class SpawnHandle(Protocol):
    pid: Optional[int]

    def wait(self) -> int:
        """Block until the task finishes and return its exit code."""

        ...


class Spawner(Protocol):
    def spawn(self, target: Callable[..., Any], *args: Any) -> SpawnHandle:
        ...


class _ProcessHandle:
    def __init__(self, process: multiprocessing.process.BaseProcess) -> None:
        self.process = process
        self.pid = process.pid

    def wait(self) -> int:
        self.process.join()
        code = self.process.exitcode
        return EXIT_FAILED if code is None else int(code)


class ProcessSpawner:
    """Run each task in a fresh process.

    ``start_method`` picks the multiprocessing context ("fork", "spawn",
    "forkserver"); ``None`` keeps the platform default. Task arguments are
    passed explicitly, so nothing relies on memory inherited from the parent.
    """

    def __init__(self, start_method: Optional[str] = None) -> None:
        self.context = multiprocessing.get_context(start_method)

    def spawn(self, target: Callable[..., Any], *args: Any) -> SpawnHandle:
        process = self.context.Process(target=target, args=args)
        try:
            process.start()
        except OSError as exc:
            raise ProcessSpawnError(f"could not start job process: {exc}") from exc
        return _ProcessHandle(process)


class _CompletedHandle:
    def __init__(self, code: int) -> None:
        self.pid = None
        self.code = code

    def wait(self) -> int:
        return self.code


class InlineSpawner:
    """Run each task synchronously in the calling process."""

    def spawn(self, target: Callable[..., Any], *args: Any) -> SpawnHandle:
        try:
            target(*args)
        except SystemExit as exc:
            code = exc.code if isinstance(exc.code, int) else EXIT_FAILED
            return _CompletedHandle(code)
        return _CompletedHandle(EXIT_OK)


def _child_main(
    template: ReceptorContext,
    job: LigandJob,
    seed: int,
    cfg: Config,
    run_logger: Optional[RunLogger],
    job_runner: JobRunner,
) -> None:
    outcome = job_runner(template, job, seed, cfg, run_logger)
    sys.exit(EXIT_OK if outcome.ok else EXIT_FAILED)


@dataclass
class BatchReport:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    peak_outstanding: int = 0


class FanOutScheduler:
    """Spawn one task per ligand with FIFO admission control.

    After each spawn, if ``fanout`` tasks are outstanding the scheduler waits
    for the oldest one (not whichever finishes first). Once the job list is
    exhausted the remaining tasks are drained in spawn order.
    """

    def __init__(
        self,
        template: ReceptorContext,
        cfg: Config,
        spawner: Optional[Spawner] = None,
        job_runner: JobRunner = dock_job,
        run_logger: Optional[RunLogger] = None,
    ) -> None:
        if cfg.fanout < 1:
            raise ValueError("fanout must be at least 1")
        self.template = template
        self.cfg = cfg
        if spawner is None:
            spawner = InlineSpawner() if cfg.fanout <= 1 else ProcessSpawner(cfg.start_method)
        self.spawner = spawner
        self.job_runner = job_runner
        self.run_logger = run_logger
        self.rng = np.random.default_rng(cfg.seed)

    def _reap(self, report: BatchReport, job: LigandJob, handle: SpawnHandle) -> None:
        code = handle.wait()
        if code == EXIT_OK:
            report.completed += 1
            return
        report.failed += 1
        logger.warning("ligand %d (%s) finished with exit code %d", job.sequence_number, job.path, code)

    def run(self, jobs: Iterable[LigandJob]) -> BatchReport:
        report = BatchReport()
        outstanding: Deque[Tuple[LigandJob, SpawnHandle]] = deque()
        for job in jobs:
            seed = draw_seed(self.rng)
            handle = self.spawner.spawn(
                _child_main, self.template, job, seed, self.cfg, self.run_logger, self.job_runner
            )
            outstanding.append((job, handle))
            report.submitted += 1
            report.peak_outstanding = max(report.peak_outstanding, len(outstanding))
            logger.debug("spawned ligand %d (pid %s)", job.sequence_number, handle.pid)
            if len(outstanding) >= self.cfg.fanout:
                self._reap(report, *outstanding.popleft())
        while outstanding:
            self._reap(report, *outstanding.popleft())
        logger.info(
            "fan-out batch done: %d submitted, %d completed, %d failed",
            report.submitted,
            report.completed,
            report.failed,
        )
        return report
