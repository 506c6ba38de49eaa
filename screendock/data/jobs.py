"""Job list enumeration with byte offsets."""

from __future__ import annotations

import os
from typing import BinaryIO, Iterator, Optional

from screendock.data.structs import LigandJob
from screendock.errors import FileAccessError


def _decode(raw: bytes) -> str:
    # undecodable bytes survive as surrogate escapes and reach open() unchanged
    return os.fsdecode(raw).rstrip("\r\n")


def _is_blank(line: str) -> bool:
    return not line.strip()


class JobSource:
    """Iterate the ligand paths of a line-oriented job file.

    Enumeration stops at the first blank line or at end of file. Each job
    carries the byte offset of its line so another process can recover the
    path with :func:`read_job_at`.
    """

    def __init__(self, path: str) -> None:
        self.path = str(path)

    def _open(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except OSError as exc:
            raise FileAccessError(self.path, "reading") from exc

    def __iter__(self) -> Iterator[LigandJob]:
        with self._open() as handle:
            sequence_number = 0
            while True:
                offset = handle.tell()
                raw = handle.readline()
                if not raw:
                    return
                line = _decode(raw)
                if _is_blank(line):
                    return
                yield LigandJob(sequence_number=sequence_number, path=line.strip(), file_offset=offset)
                sequence_number += 1

    def count(self) -> int:
        return sum(1 for _ in self)


def read_job_at(handle: BinaryIO, offset: int, sequence_number: int) -> Optional[LigandJob]:
    """Seek an open job-file handle to ``offset`` and read that line back."""

    handle.seek(int(offset))
    line = _decode(handle.readline())
    if _is_blank(line):
        return None
    return LigandJob(sequence_number=int(sequence_number), path=line.strip(), file_offset=int(offset))


def batch_output_path(batch_out_dir: str, job: LigandJob) -> str:
    """``<batch_out_dir>/<ligand basename>.out.pdbqt``."""

    return os.path.join(batch_out_dir, job.basename + ".out.pdbqt")
