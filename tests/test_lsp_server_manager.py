"""
Tests for server launch specs and process supervision.
"""

import os
import stat
import subprocess
import sys
import time
from unittest.mock import Mock, patch

import psutil
import pytest

from lsp_errors import LaunchError, LaunchErrorReason
from lsp_server_manager import ProcessSupervisor, ServerLaunchSpec, ServerOptions


class TestServerLaunchSpec:
    """Test the immutable launch description."""

    def test_overlay_wins_over_inherited_environment(self):
        spec = ServerLaunchSpec(command="server", env={"RUST_LOG": "debug", "NEW": "1"})
        merged = spec.build_environment({"RUST_LOG": "info", "PATH": "/bin"})

        assert merged == {"RUST_LOG": "debug", "NEW": "1", "PATH": "/bin"}

    def test_inherits_process_environment_by_default(self):
        spec = ServerLaunchSpec(command="server")
        with patch.dict(os.environ, {"LSP_TEST_MARKER": "yes"}):
            assert spec.build_environment()["LSP_TEST_MARKER"] == "yes"

    def test_spec_is_immutable(self):
        spec = ServerLaunchSpec(command="server", args=["--stdio"], env={"A": "1"})

        assert spec.args == ("--stdio",)
        with pytest.raises(TypeError):
            spec.env["A"] = "2"
        with pytest.raises(AttributeError):
            spec.command = "other"

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            ServerLaunchSpec(command="")

    def test_full_command(self):
        spec = ServerLaunchSpec(command="server", args=("--stdio", "-v"))
        assert spec.full_command() == ["server", "--stdio", "-v"]

    def test_server_options_select(self):
        run = ServerLaunchSpec(command="server")
        debug = ServerLaunchSpec(command="server", args=("--debug",))

        assert ServerOptions(run=run).select(debug=True) is run
        assert ServerOptions(run=run, debug=debug).select(debug=True) is debug
        assert ServerOptions(run=run, debug=debug).select(debug=False) is run


class TestResolveExecutable:
    """Test executable resolution errors."""

    def setup_method(self):
        self.supervisor = ProcessSupervisor(Mock())

    def test_missing_path_is_not_found(self, tmp_path):
        spec = ServerLaunchSpec(command=str(tmp_path / "missing-server"))
        with pytest.raises(LaunchError) as exc_info:
            self.supervisor.resolve_executable(spec, {})
        assert exc_info.value.reason == LaunchErrorReason.NOT_FOUND

    def test_missing_bare_name_is_not_found(self):
        spec = ServerLaunchSpec(command="definitely-not-a-language-server-xyz")
        with pytest.raises(LaunchError) as exc_info:
            self.supervisor.resolve_executable(spec, {"PATH": "/nonexistent"})
        assert exc_info.value.reason == LaunchErrorReason.NOT_FOUND

    def test_non_executable_file_is_permission_denied(self, tmp_path):
        script = tmp_path / "server"
        script.write_text("#!/bin/sh\n")
        script.chmod(stat.S_IRUSR | stat.S_IWUSR)

        spec = ServerLaunchSpec(command=str(script))
        with pytest.raises(LaunchError) as exc_info:
            self.supervisor.resolve_executable(spec, {})
        assert exc_info.value.reason == LaunchErrorReason.PERMISSION_DENIED

    def test_directory_is_permission_denied(self, tmp_path):
        spec = ServerLaunchSpec(command=str(tmp_path))
        with pytest.raises(LaunchError) as exc_info:
            self.supervisor.resolve_executable(spec, {})
        assert exc_info.value.reason == LaunchErrorReason.PERMISSION_DENIED

    def test_bare_name_resolved_on_path(self, tmp_path):
        script = tmp_path / "my-server"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)

        spec = ServerLaunchSpec(command="my-server")
        assert self.supervisor.resolve_executable(spec, {"PATH": str(tmp_path)}) == str(script)

    def test_spawn_maps_os_errors(self):
        spec = ServerLaunchSpec(command=sys.executable)
        with patch("subprocess.Popen", side_effect=OSError("exec format error")):
            with pytest.raises(LaunchError) as exc_info:
                self.supervisor.spawn(spec)
        assert exc_info.value.reason == LaunchErrorReason.OS_ERROR


class TestProcessSupervisor:
    """Test spawning and terminating real processes."""

    def setup_method(self):
        self.logger = Mock()
        self.supervisor = ProcessSupervisor(self.logger, grace_period=1.0, kill_timeout=2.0)

    def test_spawn_passes_environment_overlay(self):
        spec = ServerLaunchSpec(
            command=sys.executable,
            args=("-c", "import os, sys; sys.stdout.write(os.environ['RUST_LOG'])"),
            env={"RUST_LOG": "trace"},
        )
        process = self.supervisor.spawn(spec)
        try:
            output = process.stdout.read()
            process.wait(timeout=5)
        finally:
            self.supervisor.terminate(process)
            process.stdout.close()

        assert output == b"trace"

    def test_stderr_is_forwarded_to_logger(self):
        spec = ServerLaunchSpec(
            command=sys.executable,
            args=("-c", "import sys; sys.stderr.write('hello from server\\n')"),
        )
        process = self.supervisor.spawn(spec)
        process.wait(timeout=5)
        self.supervisor.terminate(process)
        process.stdout.close()

        # The drain thread runs concurrently; give it a moment
        for _ in range(100):
            messages = [str(c.args[0]) for c in self.logger.debug.call_args_list]
            if any("hello from server" in m for m in messages):
                break
            time.sleep(0.05)
        assert any("hello from server" in m for m in messages)

    def test_terminate_running_process(self):
        spec = ServerLaunchSpec(command=sys.executable, args=("-c", "import time; time.sleep(60)"))
        process = self.supervisor.spawn(spec)
        assert self.supervisor.is_running(process)

        self.supervisor.terminate(process)
        process.stdout.close()

        assert process.poll() is not None
        assert not self.supervisor.is_running(process)
        assert not psutil.pid_exists(process.pid) or psutil.Process(process.pid).ppid() != os.getpid()

    def test_terminate_kills_after_grace_period(self):
        spec = ServerLaunchSpec(
            command=sys.executable,
            args=(
                "-c",
                "import signal, sys, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
                "sys.stdout.write('ready\\n'); sys.stdout.flush(); time.sleep(60)",
            ),
        )
        supervisor = ProcessSupervisor(self.logger, grace_period=0.3, kill_timeout=2.0)
        process = supervisor.spawn(spec)
        assert process.stdout.readline() == b"ready\n"

        supervisor.terminate(process)
        process.stdout.close()

        assert process.returncode is not None
        assert process.returncode < 0
        assert any("killing" in str(c.args[0]) for c in self.logger.warning.call_args_list)

    def test_terminate_is_idempotent(self):
        spec = ServerLaunchSpec(command=sys.executable, args=("-c", "pass"))
        process = self.supervisor.spawn(spec)
        process.wait(timeout=5)

        first = self.supervisor.terminate(process)
        second = self.supervisor.terminate(process)
        process.stdout.close()

        assert first == second == 0
        assert self.supervisor.terminate(None) is None

    def test_wait_returns_none_on_timeout(self):
        process = Mock()
        process.wait.side_effect = subprocess.TimeoutExpired("server", 0.1)
        assert self.supervisor.wait(process, 0.1) is None
