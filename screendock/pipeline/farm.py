"""Pull-based coordinator/worker farm.

Workers announce themselves with a :class:`Ready` message on a shared request
channel; the coordinator answers on that worker's private channel with an
:class:`Assignment` carrying ``(seed, offset, sequence_number)``. Once the
job file is exhausted every worker gets one sentinel assignment (``offset``
of -1) and exits.
"""

from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from screendock.data.jobs import read_job_at
from screendock.errors import FileAccessError, MessageProtocolError, ProcessSpawnError
from screendock.pipeline.logging import RunLogger
from screendock.pipeline.run import Config, build_context, dock_job, draw_seed
from screendock.pipeline.scheduler import JobRunner
from screendock.scoring.context import ReceptorContext

logger = logging.getLogger(__name__)

SENTINEL_OFFSET = -1
POLL_INTERVAL = 1.0


@dataclass(frozen=True)
class Ready:
    worker_id: int
    processed: int


@dataclass(frozen=True)
class Assignment:
    seed: int
    offset: int
    sequence_number: int

    @property
    def is_sentinel(self) -> bool:
        return self.offset < 0


SENTINEL = Assignment(seed=0, offset=SENTINEL_OFFSET, sequence_number=-1)


class QueueChannel:
    """One-directional message channel over a ``put``/``get`` queue."""

    def __init__(self, backing: Any) -> None:
        self.backing = backing

    def send(self, message: Any) -> None:
        self.backing.put(message)

    def receive(self, timeout: Optional[float] = None) -> Any:
        return self.backing.get(timeout=timeout)


@dataclass
class WorkerState:
    """Coordinator-side view of one worker during a run."""

    worker_id: int
    last_assignment: Optional[Assignment] = None
    pending: bool = False
    processed: int = 0
    finished: bool = False


@dataclass
class FarmReport:
    assignments: int = 0
    sentinels: int = 0
    processed_by_worker: Dict[int, int] = field(default_factory=dict)

    @property
    def sends(self) -> int:
        return self.assignments + self.sentinels


def _open_job_file(path: str):
    try:
        return open(path, "rb")
    except OSError as exc:
        raise FileAccessError(path, "reading") from exc


class FarmCoordinator:
    """Hand out job-file lines to whichever worker asks first."""

    def __init__(
        self,
        job_file: str,
        requests: QueueChannel,
        assignments: List[QueueChannel],
        seed: Optional[int] = None,
        liveness: Optional[Any] = None,
    ) -> None:
        if not assignments:
            raise ValueError("the farm needs at least one worker channel")
        self.job_file = job_file
        self.requests = requests
        self.assignments = assignments
        self.rng = np.random.default_rng(seed)
        self.liveness = liveness
        self.states = [WorkerState(worker_id) for worker_id in range(len(assignments))]

    @property
    def n_workers(self) -> int:
        return len(self.assignments)

    def _receive_ready(self) -> Ready:
        while True:
            try:
                message = self.requests.receive(timeout=POLL_INTERVAL)
            except queue.Empty:
                if self.liveness is not None:
                    self.liveness()
                continue
            break
        if not isinstance(message, Ready):
            raise MessageProtocolError(f"expected a ready message, got {message!r}")
        if not 0 <= message.worker_id < self.n_workers:
            raise MessageProtocolError(f"ready message from unknown worker {message.worker_id}")
        state = self.states[message.worker_id]
        if state.finished:
            raise MessageProtocolError(f"worker {message.worker_id} asked for work after its sentinel")
        if state.pending:
            raise MessageProtocolError(f"worker {message.worker_id} asked twice without an answer")
        state.pending = True
        state.processed = message.processed
        logger.debug("request from worker %d (%d processed)", message.worker_id, message.processed)
        return message

    def _answer(self, worker_id: int, assignment: Assignment) -> None:
        state = self.states[worker_id]
        self.assignments[worker_id].send(assignment)
        state.pending = False
        state.last_assignment = assignment
        if assignment.is_sentinel:
            state.finished = True

    def run(self) -> FarmReport:
        report = FarmReport()
        with _open_job_file(self.job_file) as handle:
            sequence_number = 0
            while True:
                offset = handle.tell()
                raw = handle.readline()
                if not raw or not raw.strip():
                    break
                ready = self._receive_ready()
                self._answer(ready.worker_id, Assignment(draw_seed(self.rng), offset, sequence_number))
                logger.debug("ligand %d -> worker %d", sequence_number, ready.worker_id)
                report.assignments += 1
                sequence_number += 1

        for _ in range(self.n_workers):
            ready = self._receive_ready()
            self._answer(ready.worker_id, SENTINEL)
            report.sentinels += 1
        report.processed_by_worker = {state.worker_id: state.processed for state in self.states}
        logger.info(
            "farm done: %d assignments, %d sentinels, per worker %s",
            report.assignments,
            report.sentinels,
            report.processed_by_worker,
        )
        return report


class FarmWorker:
    """Request, process, repeat until a sentinel arrives."""

    def __init__(
        self,
        worker_id: int,
        requests: QueueChannel,
        inbox: QueueChannel,
        template: ReceptorContext,
        cfg: Config,
        job_file: str,
        job_runner: JobRunner = dock_job,
        run_logger: Optional[RunLogger] = None,
    ) -> None:
        self.worker_id = worker_id
        self.requests = requests
        self.inbox = inbox
        self.template = template
        self.cfg = cfg
        self.job_file = job_file
        self.job_runner = job_runner
        self.run_logger = run_logger
        self.processed = 0

    def run(self) -> int:
        with _open_job_file(self.job_file) as handle:
            while True:
                self.requests.send(Ready(self.worker_id, self.processed))
                message = self.inbox.receive()
                if not isinstance(message, Assignment):
                    raise MessageProtocolError(f"worker {self.worker_id} expected an assignment, got {message!r}")
                if message.is_sentinel:
                    break
                job = read_job_at(handle, message.offset, message.sequence_number)
                if job is None:
                    raise MessageProtocolError(f"offset {message.offset} does not point at a job line")
                self.job_runner(self.template, job, message.seed, self.cfg, self.run_logger)
                self.processed += 1
        logger.debug("worker %d exiting after %d ligands", self.worker_id, self.processed)
        return self.processed


class ThreadFarmTransport:
    """Workers as threads sharing one receptor context."""

    def __init__(self, n_workers: int) -> None:
        self.requests = QueueChannel(queue.Queue())
        self.assignments = [QueueChannel(queue.Queue()) for _ in range(n_workers)]
        self._threads: List[threading.Thread] = []
        self._errors: List[BaseException] = []

    def start(
        self,
        template: ReceptorContext,
        cfg: Config,
        job_file: str,
        job_runner: JobRunner,
        run_logger: Optional[RunLogger],
    ) -> None:
        for worker_id, inbox in enumerate(self.assignments):
            worker = FarmWorker(worker_id, self.requests, inbox, template, cfg, job_file, job_runner, run_logger)
            thread = threading.Thread(target=self._guard, args=(worker,), name=f"farm-worker-{worker_id}", daemon=True)
            thread.start()
            self._threads.append(thread)

    def _guard(self, worker: FarmWorker) -> None:
        try:
            worker.run()
        except BaseException as exc:  # noqa: BLE001
            # re-raised by check() or join() in the coordinator thread
            self._errors.append(exc)

    def check(self) -> None:
        if self._errors:
            raise self._errors[0]
        if self._threads and not any(thread.is_alive() for thread in self._threads):
            raise MessageProtocolError("every farm worker exited while the coordinator was waiting")

    def join(self) -> None:
        for thread in self._threads:
            thread.join()
        if self._errors:
            raise self._errors[0]


def _process_worker_main(
    worker_id: int,
    requests: Any,
    inbox: Any,
    receptor_path: str,
    cfg: Config,
    job_file: str,
    run_logger: Optional[RunLogger],
) -> None:
    template = build_context(cfg, receptor_path)
    worker = FarmWorker(worker_id, QueueChannel(requests), QueueChannel(inbox), template, cfg, job_file, dock_job, run_logger)
    worker.run()


class ProcessFarmTransport:
    """Workers as processes; each builds its own receptor context from disk."""

    def __init__(self, n_workers: int, start_method: Optional[str] = None) -> None:
        self.context = multiprocessing.get_context(start_method)
        self._request_queue = self.context.Queue()
        self._inboxes = [self.context.Queue() for _ in range(n_workers)]
        self.requests = QueueChannel(self._request_queue)
        self.assignments = [QueueChannel(inbox) for inbox in self._inboxes]
        self._processes: List[multiprocessing.process.BaseProcess] = []

    def start(self, receptor_path: str, cfg: Config, job_file: str, run_logger: Optional[RunLogger]) -> None:
        for worker_id, inbox in enumerate(self._inboxes):
            process = self.context.Process(
                target=_process_worker_main,
                args=(worker_id, self._request_queue, inbox, receptor_path, cfg, job_file, run_logger),
                name=f"farm-worker-{worker_id}",
            )
            try:
                process.start()
            except OSError as exc:
                raise ProcessSpawnError(f"could not start farm worker {worker_id}: {exc}") from exc
            self._processes.append(process)

    def check(self) -> None:
        for process in self._processes:
            if process.exitcode not in (None, 0):
                raise ProcessSpawnError(f"{process.name} died with exit code {process.exitcode}")

    def join(self) -> None:
        for process in self._processes:
            process.join()
        self.check()

    def terminate(self) -> None:
        for process in self._processes:
            if process.is_alive():
                process.terminate()


def run_farm(
    cfg: Config,
    receptor_path: str,
    job_file: str,
    threads: bool = False,
    template: Optional[ReceptorContext] = None,
    job_runner: JobRunner = dock_job,
    run_logger: Optional[RunLogger] = None,
) -> FarmReport:
    """Run a whole batch through the farm.

    With ``threads`` the workers are threads sharing ``template`` (built from
    ``receptor_path`` when missing) and calling ``job_runner``. Otherwise each
    worker is a process that builds its own context and runs :func:`dock_job`.
    """

    n_workers = int(cfg.workers)
    if n_workers < 1:
        raise ValueError("the farm needs at least one worker")
    if threads:
        transport = ThreadFarmTransport(n_workers)
        transport.start(template or build_context(cfg, receptor_path), cfg, job_file, job_runner, run_logger)
        coordinator = FarmCoordinator(job_file, transport.requests, transport.assignments, cfg.seed, transport.check)
        report = coordinator.run()
        transport.join()
        return report

    process_transport = ProcessFarmTransport(n_workers, cfg.start_method)
    process_transport.start(receptor_path, cfg, job_file, run_logger)
    coordinator = FarmCoordinator(
        job_file, process_transport.requests, process_transport.assignments, cfg.seed, process_transport.check
    )
    try:
        report = coordinator.run()
    except BaseException:
        process_transport.terminate()
        raise
    process_transport.join()
    return report
