"""
Helpers shared by the LSP client tests.
"""

import asyncio
import os
import subprocess
import time


async def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate on the event loop until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


class PipeProcess:
    """Stand-in for subprocess.Popen whose stdout is an OS pipe the test writes to."""

    def __init__(self, pid: int = 424242):
        read_fd, write_fd = os.pipe()
        self.stdout = os.fdopen(read_fd, "rb")
        self._server_out = os.fdopen(write_fd, "wb")
        self.stdin = RecordingStream()
        self.stderr = None
        self.pid = pid
        self.returncode = None

    def server_write(self, data: bytes) -> None:
        self._server_out.write(data)
        self._server_out.flush()

    def server_close(self, returncode: int | None = None) -> None:
        self.returncode = returncode
        if not self._server_out.closed:
            self._server_out.close()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired("pipe-process", timeout)
        return self.returncode


class RecordingStream:
    """Binary write stream that keeps everything written to it."""

    def __init__(self, fail_with: Exception | None = None):
        self.data = bytearray()
        self.closed = False
        self.fail_with = fail_with

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed file")
        if self.fail_with is not None:
            raise self.fail_with
        self.data.extend(data)
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True
