import pytest

from screendock.data.jobs import JobSource
from screendock.data.structs import JobOutcome
from screendock.errors import ProcessSpawnError
from screendock.pipeline.logging import RunLogger
from screendock.pipeline.run import Config
from screendock.pipeline.scheduler import FanOutScheduler, InlineSpawner


class RecordingSpawner:
    """Runs tasks inline but keeps them outstanding until waited on."""

    def __init__(self):
        self.outstanding = 0
        self.peak = 0
        self.order = []

    def spawn(self, target, *args):
        self.outstanding += 1
        self.peak = max(self.peak, self.outstanding)
        self.order.append(args[1].sequence_number)
        code = InlineSpawner().spawn(target, *args).wait()
        return _Handle(self, code)


class _Handle:
    pid = None

    def __init__(self, spawner, code):
        self.spawner = spawner
        self.code = code

    def wait(self):
        self.spawner.outstanding -= 1
        return self.code


def _job_file(tmp_path, names):
    path = tmp_path / "jobs.txt"
    path.write_text("\n".join(names) + "\n", encoding="utf-8")
    return str(path)


def _runner(seen, failing=()):
    def run(template, job, seed, cfg, run_logger):
        seen.append((job.sequence_number, seed))
        outcome = JobOutcome(job=job, seed=seed)
        if job.path in failing:
            outcome.status = "failed"
            outcome.error_kind = "FileAccessError"
        if run_logger is not None:
            run_logger.log_job(outcome)
        return outcome

    return run


def test_fanout_never_exceeds_limit(tmp_path):
    seen = []
    spawner = RecordingSpawner()
    cfg = Config(fanout=2, seed=3)
    scheduler = FanOutScheduler(None, cfg, spawner=spawner, job_runner=_runner(seen))

    report = scheduler.run(JobSource(_job_file(tmp_path, ["a.pdbqt", "b.pdbqt", "c.pdbqt"])))

    assert spawner.peak <= 2
    assert report.peak_outstanding == 2
    assert report.submitted == 3
    assert report.completed == 3
    assert report.failed == 0
    assert spawner.order == [0, 1, 2]
    assert [number for number, _ in seen] == [0, 1, 2]
    assert all(1 <= seed <= 100_000_000 for _, seed in seen)


def test_fanout_one_runs_strictly_sequentially(tmp_path):
    spawner = RecordingSpawner()
    scheduler = FanOutScheduler(None, Config(fanout=1), spawner=spawner, job_runner=_runner([]))
    report = scheduler.run(JobSource(_job_file(tmp_path, ["a", "b", "c", "d"])))
    assert spawner.peak == 1
    assert report.completed == 4


def test_failed_job_does_not_stop_siblings(tmp_path):
    seen = []
    run_logger = RunLogger()
    scheduler = FanOutScheduler(
        None,
        Config(fanout=2, seed=1),
        spawner=InlineSpawner(),
        job_runner=_runner(seen, failing={"b.pdbqt"}),
        run_logger=run_logger,
    )

    report = scheduler.run(JobSource(_job_file(tmp_path, ["a.pdbqt", "b.pdbqt", "c.pdbqt"])))

    assert report.completed == 2
    assert report.failed == 1
    assert len(seen) == 3
    summary = run_logger.summary()
    assert summary["n_failed"] == 1
    assert summary["failures_by_kind"] == {"FileAccessError": 1}


def test_seeds_follow_the_configured_seed(tmp_path):
    first, second = [], []
    job_file = _job_file(tmp_path, ["a", "b"])
    FanOutScheduler(None, Config(seed=9), spawner=InlineSpawner(), job_runner=_runner(first)).run(JobSource(job_file))
    FanOutScheduler(None, Config(seed=9), spawner=InlineSpawner(), job_runner=_runner(second)).run(JobSource(job_file))
    assert first == second


def test_spawn_failure_is_fatal(tmp_path):
    class BrokenSpawner:
        def spawn(self, target, *args):
            raise ProcessSpawnError("fork failed")

    scheduler = FanOutScheduler(None, Config(fanout=2), spawner=BrokenSpawner(), job_runner=_runner([]))
    with pytest.raises(ProcessSpawnError):
        scheduler.run(JobSource(_job_file(tmp_path, ["a"])))
