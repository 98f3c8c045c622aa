"""
LSP Server Process Management

This module owns the language server subprocess: the immutable launch
description, executable resolution, spawning with stdio pipes wired for the
transport channel, forwarding of the server's stderr to the log, and bounded
graceful-then-forced termination.
"""

import logging
import os
import shutil
import subprocess
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from constants import DEFAULT_KILL_TIMEOUT, DEFAULT_TERMINATE_GRACE_PERIOD
from lsp_errors import LaunchError, LaunchErrorReason
from system_utils import is_process_running, log_process_state


@dataclass(frozen=True)
class ServerLaunchSpec:
    """How to launch the language server. Created once, never mutated."""

    command: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None

    def __post_init__(self):
        if not self.command:
            raise ValueError("Server command cannot be empty")
        object.__setattr__(self, "args", tuple(str(arg) for arg in self.args))
        object.__setattr__(
            self,
            "env",
            MappingProxyType({str(k): str(v) for k, v in dict(self.env).items()}),
        )

    def build_environment(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Merge the overlay over the inherited environment; the overlay wins."""
        environment = dict(os.environ if base is None else base)
        environment.update(self.env)
        return environment

    def full_command(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class ServerOptions:
    """Launch specs for normal and debug runs of the server."""

    run: ServerLaunchSpec
    debug: ServerLaunchSpec | None = None

    def select(self, debug: bool = False) -> ServerLaunchSpec:
        if debug and self.debug is not None:
            return self.debug
        return self.run


class ProcessSupervisor:
    """Spawns and terminates language server processes."""

    def __init__(
        self,
        logger: logging.Logger,
        grace_period: float = DEFAULT_TERMINATE_GRACE_PERIOD,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ):
        self.logger = logger
        self.grace_period = grace_period
        self.kill_timeout = kill_timeout

    def resolve_executable(self, spec: ServerLaunchSpec, environment: Mapping[str, str]) -> str:
        """Resolve the command to an executable path or raise LaunchError."""
        command = os.path.expanduser(spec.command)

        if os.sep in command or (os.altsep and os.altsep in command):
            if not os.path.isabs(command):
                command = os.path.join(spec.cwd or os.getcwd(), command)
            if not os.path.exists(command):
                raise LaunchError(
                    LaunchErrorReason.NOT_FOUND,
                    f"Server executable does not exist: {command}",
                )
            if os.path.isdir(command) or not os.access(command, os.X_OK):
                raise LaunchError(
                    LaunchErrorReason.PERMISSION_DENIED,
                    f"Server executable is not executable: {command}",
                )
            return command

        resolved = shutil.which(command, path=environment.get("PATH"))
        if resolved is None:
            raise LaunchError(
                LaunchErrorReason.NOT_FOUND,
                f"Server executable not found on PATH: {command}",
            )
        return resolved

    def spawn(self, spec: ServerLaunchSpec) -> subprocess.Popen:
        """Start the server with stdin/stdout/stderr pipes."""
        environment = spec.build_environment()
        executable = self.resolve_executable(spec, environment)
        full_command = [executable, *spec.args]

        self.logger.info(f"Starting LSP server: {' '.join(full_command)}")
        if spec.env:
            self.logger.debug(f"Environment overlay: {dict(spec.env)}")
        if spec.cwd:
            self.logger.debug(f"Working directory: {spec.cwd}")

        try:
            process = subprocess.Popen(
                full_command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=False,  # Binary mode, framing is byte-oriented
                cwd=spec.cwd,
                env=environment,
            )
        except FileNotFoundError as e:
            raise LaunchError(LaunchErrorReason.NOT_FOUND, str(e)) from e
        except PermissionError as e:
            raise LaunchError(LaunchErrorReason.PERMISSION_DENIED, str(e)) from e
        except OSError as e:
            raise LaunchError(LaunchErrorReason.OS_ERROR, str(e)) from e

        self.logger.debug(f"Server process PID: {process.pid}")
        log_process_state(self.logger, process.pid, "spawned")
        self._start_stderr_thread(process, os.path.basename(executable))
        return process

    def _start_stderr_thread(self, process: subprocess.Popen, label: str) -> None:
        thread = threading.Thread(
            target=self._drain_stderr,
            args=(process, label),
            name=f"lsp-stderr-{process.pid}",
            daemon=True,
        )
        thread.start()

    def _drain_stderr(self, process: subprocess.Popen, label: str) -> None:
        """Forward server stderr lines to the log until the pipe closes."""
        stream = process.stderr
        if stream is None:
            return
        try:
            for line in iter(stream.readline, b""):
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    self.logger.debug(f"[{label}] {text}")
        except (OSError, ValueError):
            # Pipe closed underneath us
            pass
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def is_running(self, process: subprocess.Popen | None) -> bool:
        if process is None or process.poll() is not None:
            return False
        return is_process_running(process.pid)

    def terminate(self, process: subprocess.Popen | None) -> int | None:
        """Stop the process: SIGTERM, bounded wait, then SIGKILL.

        Idempotent; an already exited process is left alone. Returns the exit
        code, or None if the process could not be reaped.
        """
        if process is None:
            return None

        if process.poll() is not None:
            self.logger.debug(
                f"Server process {process.pid} already exited with code {process.returncode}"
            )
            self._close_stdin(process)
            return process.returncode

        self._close_stdin(process)
        self.logger.info(f"Terminating server process {process.pid}")
        process.terminate()
        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            self.logger.warning(
                f"Server process {process.pid} didn't terminate within "
                f"{self.grace_period}s, killing"
            )
            process.kill()
            try:
                process.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                self.logger.error(f"Server process {process.pid} didn't die after SIGKILL")
                return None

        self.logger.debug(f"Server process {process.pid} exited with code {process.returncode}")
        log_process_state(self.logger, process.pid, "terminated")
        return process.returncode

    def wait(self, process: subprocess.Popen, timeout: float) -> int | None:
        """Wait for a voluntary exit; returns None on timeout."""
        try:
            return process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def _close_stdin(self, process: subprocess.Popen) -> None:
        if process.stdin and not process.stdin.closed:
            try:
                process.stdin.close()
            except OSError:
                # Broken pipe on the final flush
                pass
