from __future__ import annotations

import logging
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Sequence

logger = logging.getLogger(__name__)


class ProcessTimeout(Exception):
    """The child process did not exit before its deadline and was terminated."""

    def __init__(self, cmd: Sequence[str], timeout_s: float):
        super().__init__(f"{cmd[0]} did not finish within {timeout_s:.1f}s")
        self.cmd = list(cmd)
        self.timeout_s = timeout_s


@dataclass
class CompletedRun:
    returncode: int
    stdout: str
    stderr: str

    def last_error_line(self) -> str:
        lines = [line.strip() for line in self.stderr.splitlines() if line.strip()]
        return lines[-1] if lines else f"exit code {self.returncode}"


@contextmanager
def managed_process(cmd: Sequence[str], grace_s: float = 5.0) -> Iterator[subprocess.Popen]:
    """Spawn ``cmd`` and guarantee it is gone when the block exits.

    On any exit path (normal, error, timeout, KeyboardInterrupt) a still-running
    child is terminated, then killed if it ignores the terminate for ``grace_s``.
    """
    logger.debug("Spawning: %s", " ".join(str(c) for c in cmd))
    proc = subprocess.Popen(
        [str(c) for c in cmd],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    try:
        yield proc
    finally:
        if proc.poll() is None:
            logger.info("Terminating %s (pid %d)", cmd[0], proc.pid)
            proc.terminate()
            try:
                proc.wait(timeout=grace_s)
            except subprocess.TimeoutExpired:
                logger.warning("%s ignored terminate; killing", cmd[0])
                proc.kill()
                proc.wait()
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()


def run_bounded(cmd: Sequence[str], timeout_s: float, grace_s: float = 5.0) -> CompletedRun:
    """Run ``cmd`` to completion, raising ProcessTimeout past ``timeout_s`` (0 = no bound)."""
    with managed_process(cmd, grace_s=grace_s) as proc:
        try:
            out, err = proc.communicate(timeout=timeout_s or None)
        except subprocess.TimeoutExpired:
            raise ProcessTimeout(cmd, timeout_s) from None
    return CompletedRun(
        returncode=proc.returncode,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )
