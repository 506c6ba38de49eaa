"""Error taxonomy for screendock."""

from __future__ import annotations


class DockingError(Exception):
    """Base class for all screendock errors."""


class UsageError(DockingError):
    """Invalid configuration or command-line usage."""


class FileAccessError(DockingError):
    """A job, structure or output file could not be opened."""

    def __init__(self, path: str, mode: str = "reading") -> None:
        self.path = str(path)
        self.mode = mode
        super().__init__(f'could not open "{self.path}" for {mode}')


class ParseError(DockingError):
    """A structure file is malformed."""

    def __init__(self, path: str, line: int, reason: str) -> None:
        self.path = str(path)
        self.line = int(line)
        self.reason = reason
        super().__init__(f'parse error on line {self.line} in file "{self.path}": {reason}')


class ProcessSpawnError(DockingError):
    """The scheduler could not start a child process."""


class MessageProtocolError(DockingError):
    """Coordinator and worker fell out of the ready/assign exchange."""


class OptimizationDivergence(DockingError):
    """No pose satisfied box containment.

    Never raised by the refinement itself (the pose is marked with the invalid
    energy instead); kept as the error kind reported for jobs that end up with
    no valid pose.
    """
