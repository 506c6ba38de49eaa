import queue
import threading

import pytest

from screendock.data.structs import JobOutcome
from screendock.errors import MessageProtocolError
from screendock.pipeline.farm import (
    Assignment,
    FarmCoordinator,
    FarmWorker,
    QueueChannel,
    Ready,
    run_farm,
)
from screendock.pipeline.run import Config


class RecordingChannel(QueueChannel):
    def __init__(self, backing, log):
        super().__init__(backing)
        self.log = log

    def send(self, message):
        self.log.append(message)
        super().send(message)


def _job_file(tmp_path, count):
    path = tmp_path / "jobs.txt"
    path.write_text("".join(f"ligands/lig_{idx}.pdbqt\n" for idx in range(count)), encoding="utf-8")
    return str(path)


def _runner(processed, lock):
    def run(template, job, seed, cfg, run_logger):
        with lock:
            processed.append(job.path)
        return JobOutcome(job=job, seed=seed)

    return run


def test_five_jobs_three_workers(tmp_path):
    job_file = _job_file(tmp_path, 5)
    processed, lock = [], threading.Lock()
    sent = {idx: [] for idx in range(3)}
    requests = QueueChannel(queue.Queue())
    inboxes = [RecordingChannel(queue.Queue(), sent[idx]) for idx in range(3)]
    workers = [
        FarmWorker(idx, requests, inboxes[idx], None, Config(), job_file, _runner(processed, lock))
        for idx in range(3)
    ]
    threads = [threading.Thread(target=worker.run) for worker in workers]
    for thread in threads:
        thread.start()

    report = FarmCoordinator(job_file, requests, inboxes, seed=4).run()
    for thread in threads:
        thread.join(timeout=10)

    all_sent = [message for messages in sent.values() for message in messages]
    assert len(all_sent) == 8
    assert report.sends == 8
    assert report.assignments == 5
    assert report.sentinels == 3
    for messages in sent.values():
        assert messages[-1].is_sentinel
        assert sum(1 for message in messages if message.is_sentinel) == 1
    assert all(message.offset >= 0 for message in all_sent if not message.is_sentinel)
    assert sorted(processed) == [f"ligands/lig_{idx}.pdbqt" for idx in range(5)]
    assert sum(worker.processed for worker in workers) == 5
    assert sum(report.processed_by_worker.values()) == 5


def test_coordinator_rejects_unexpected_message(tmp_path):
    requests = QueueChannel(queue.Queue())
    requests.send("hello")
    coordinator = FarmCoordinator(_job_file(tmp_path, 1), requests, [QueueChannel(queue.Queue())])
    with pytest.raises(MessageProtocolError):
        coordinator.run()


def test_coordinator_rejects_unknown_worker(tmp_path):
    requests = QueueChannel(queue.Queue())
    requests.send(Ready(worker_id=7, processed=0))
    coordinator = FarmCoordinator(_job_file(tmp_path, 1), requests, [QueueChannel(queue.Queue())])
    with pytest.raises(MessageProtocolError):
        coordinator.run()


def test_worker_rejects_bad_assignment(tmp_path):
    requests = QueueChannel(queue.Queue())
    inbox = QueueChannel(queue.Queue())
    inbox.send(Ready(worker_id=0, processed=0))
    worker = FarmWorker(0, requests, inbox, None, Config(), _job_file(tmp_path, 1), _runner([], threading.Lock()))
    with pytest.raises(MessageProtocolError):
        worker.run()


def test_empty_job_file_only_sends_sentinels(tmp_path):
    job_file = tmp_path / "jobs.txt"
    job_file.write_text("\n", encoding="utf-8")
    processed, lock = [], threading.Lock()
    cfg = Config(workers=2, seed=1)

    report = run_farm(cfg, "unused.pdbqt", str(job_file), threads=True, template=object(), job_runner=_runner(processed, lock))

    assert report.assignments == 0
    assert report.sentinels == 2
    assert processed == []


def test_thread_farm_processes_every_job_once(tmp_path):
    processed, lock = [], threading.Lock()
    cfg = Config(workers=3, seed=2)
    report = run_farm(cfg, "unused.pdbqt", _job_file(tmp_path, 7), threads=True, template=object(), job_runner=_runner(processed, lock))
    assert report.assignments == 7
    assert report.sentinels == 3
    assert len(processed) == len(set(processed)) == 7


def test_assignment_sentinel_flag():
    assert Assignment(seed=1, offset=-1, sequence_number=-1).is_sentinel
    assert not Assignment(seed=1, offset=0, sequence_number=0).is_sentinel
