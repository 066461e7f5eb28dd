"""Default execution collaborator backed by :mod:`subprocess`."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from typing import IO

from turnstile.tools import ExecutionFailure, ExecutionOutcome, ExecutionSuccess

logger = logging.getLogger(__name__)

TIMEOUT_SECONDS = 30.0
MAX_OUTPUT_BYTES = 10 * 1024 * 1024
READ_SIZE = 64 * 1024

_POSIX = os.name == "posix"


def _kill(process: subprocess.Popen) -> None:
    """Kill the shell and, on POSIX, everything it started."""
    if not _POSIX:
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class ShellExecutor:
    """Runs a command through the shell with a timeout and output cap.

    Output is read incrementally; a command that writes more than
    ``max_output_bytes`` to either pipe is killed as soon as the cap is
    passed.

    Args:
        timeout: Seconds before the command is killed.
        max_output_bytes: Largest output accepted before the run is
            reported as a failure.
        cwd: Working directory, or the current one.
    """

    def __init__(
        self,
        timeout: float = TIMEOUT_SECONDS,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
        cwd: str | None = None,
    ):
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.cwd = cwd

    def _drain(
        self, process: subprocess.Popen, pipe: IO[bytes], sink: bytearray,
    ) -> None:
        while True:
            data = pipe.read1(READ_SIZE)
            if not data:
                return
            sink.extend(data)
            if len(sink) > self.max_output_bytes:
                _kill(process)
                return

    def __call__(self, command: str) -> ExecutionOutcome:
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
                start_new_session=_POSIX,
            )
        except OSError as e:
            return ExecutionFailure(error_message=str(e))

        stdout, stderr = bytearray(), bytearray()
        readers = [
            threading.Thread(
                target=self._drain, args=(process, pipe, sink), daemon=True,
            )
            for pipe, sink in ((process.stdout, stdout), (process.stderr, stderr))
        ]
        with process:
            for reader in readers:
                reader.start()
            try:
                returncode = process.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                _kill(process)
                returncode = None
            for reader in readers:
                reader.join()

        if returncode is None:
            return ExecutionFailure(
                error_message=f"Command timed out after {self.timeout:g} seconds"
            )
        if len(stdout) > self.max_output_bytes or len(stderr) > self.max_output_bytes:
            logger.warning(f"{command!r} exceeded the output cap")
            return ExecutionFailure(
                error_message=f"Output exceeded {self.max_output_bytes} bytes"
            )
        if returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            logger.debug(f"{command!r} exited with {returncode}")
            return ExecutionFailure(
                error_message=(
                    f"Command failed with exit code {returncode}"
                    + (f": {message}" if message else "")
                )
            )
        return ExecutionSuccess(stdout=stdout.decode("utf-8", errors="replace"))
